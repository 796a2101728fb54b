"""Rule-based task intent classifier.

Free text is lowercased and split into alphanumeric tokens. Each intent owns a
fixed keyword list: a keyword equal to a token scores one point, a keyword that
is a strict substring of a token ("crash" inside "crashes") scores half a
point. The raw score is normalised by the square root of the token count so
that short, keyword-dense requests classify with more confidence than long
rambling ones. Situational context (an error on screen, an open test file,
recently touched test files) adds fixed boosts to the raw score before
normalisation.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping, Sequence
from typing import Any, Dict, List, Tuple

from ..schema import ClassificationContext, ClassificationResult, TaskIntent

DEFAULT_MIN_CONFIDENCE = 0.3
SECONDARY_INTENT_RATIO = 0.7
MIN_SUBSTRING_KEYWORD_LENGTH = 3

ERROR_PRESENT_BOOST = 1.0
TEST_FILE_BOOST = 1.0
RECENT_TEST_FILES_BOOST = 0.5

# Declaration order doubles as the tie-breaking priority.
INTENT_KEYWORDS: Dict[TaskIntent, Tuple[str, ...]] = {
    TaskIntent.DEBUG: (
        "fix",
        "bug",
        "error",
        "crash",
        "fail",
        "failing",
        "broken",
        "debug",
        "exception",
        "typeerror",
        "traceback",
        "undefined",
        "issue",
        "wrong",
        "problem",
    ),
    TaskIntent.IMPLEMENT: (
        "implement",
        "add",
        "create",
        "build",
        "new",
        "feature",
        "support",
        "introduce",
        "develop",
    ),
    TaskIntent.TEST: (
        "test",
        "tests",
        "testing",
        "coverage",
        "assert",
        "mock",
        "unit",
        "e2e",
        "pytest",
        "vitest",
        "jest",
    ),
    TaskIntent.REFACTOR: (
        "refactor",
        "restructure",
        "cleanup",
        "rename",
        "extract",
        "simplify",
        "reorganize",
        "decouple",
        "optimize",
        "modularize",
    ),
    TaskIntent.EXPLORE: (
        "explain",
        "understand",
        "how",
        "what",
        "where",
        "why",
        "find",
        "explore",
        "overview",
        "describe",
        "locate",
    ),
    TaskIntent.REVIEW: (
        "review",
        "audit",
        "inspect",
        "verify",
        "check",
        "changes",
        "diff",
        "feedback",
        "approve",
    ),
}

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_TEST_FILE_RE = re.compile(
    r"(\.(test|spec)\.[a-z0-9]+$)|(^|/)test_[^/]+\.py$|_test\.(py|go)$|(^|/)(tests?|__tests__)/"
)


class ClassifierInputError(TypeError):
    """Raised when the classifier receives input it cannot interpret."""


class TaskIntentClassifier:
    """Deterministic keyword classifier mapping task text to a :class:`TaskIntent`."""

    def __init__(self, *, min_confidence: float = DEFAULT_MIN_CONFIDENCE) -> None:
        if not 0.0 <= min_confidence <= 1.0:
            raise ValueError(f"min_confidence must be within [0, 1], got {min_confidence!r}")
        self._min_confidence = min_confidence

    @property
    def min_confidence(self) -> float:
        return self._min_confidence

    def classify(self, text: str) -> ClassificationResult:
        """Classify ``text`` without situational context."""
        return self._classify(text, None)

    def classify_with_context(
        self,
        text: str,
        context: ClassificationContext | Mapping[str, Any] | None,
    ) -> ClassificationResult:
        """Classify ``text`` applying boosts derived from ``context``."""
        return self._classify(text, _coerce_context(context))

    # ----------------------------------------------------------------- scoring
    def _classify(self, text: str, context: ClassificationContext | None) -> ClassificationResult:
        if not isinstance(text, str):
            raise ClassifierInputError(f"Task text must be a string, got {type(text).__name__}")
        if not text.strip():
            return ClassificationResult(intent=TaskIntent.UNKNOWN, confidence=0.0)

        tokens = _TOKEN_RE.findall(text.lower())
        if not tokens:
            return ClassificationResult(intent=TaskIntent.UNKNOWN, confidence=0.0)

        scores: Dict[TaskIntent, float] = {}
        signals: List[str] = []
        for intent, keywords in INTENT_KEYWORDS.items():
            score, matched = _score_keywords(tokens, keywords)
            scores[intent] = score
            for keyword in matched:
                if keyword not in signals:
                    signals.append(keyword)

        if context is not None:
            for intent, boost, label in _context_boosts(context):
                scores[intent] += boost
                signals.append(label)

        if not any(score > 0 for score in scores.values()):
            return ClassificationResult(intent=TaskIntent.UNKNOWN, confidence=0.0)

        norm = math.sqrt(len(tokens))
        confidences = {intent: min(1.0, score / norm) for intent, score in scores.items()}
        ranked = sorted(
            INTENT_KEYWORDS,
            key=lambda intent: confidences[intent],
            reverse=True,
        )
        winner = ranked[0]
        confidence = confidences[winner]
        if confidence < self._min_confidence:
            return ClassificationResult(
                intent=TaskIntent.UNKNOWN,
                confidence=round(confidence, 4),
                signals=tuple(signals),
            )

        secondary = None
        runner_up = ranked[1] if len(ranked) > 1 else None
        if runner_up is not None:
            runner_confidence = confidences[runner_up]
            if runner_confidence > 0 and runner_confidence >= confidence * SECONDARY_INTENT_RATIO:
                secondary = runner_up

        return ClassificationResult(
            intent=winner,
            confidence=round(confidence, 4),
            signals=tuple(signals),
            secondary_intent=secondary,
        )


def _score_keywords(tokens: Sequence[str], keywords: Sequence[str]) -> tuple[float, List[str]]:
    score = 0.0
    matched: List[str] = []
    token_set = set(tokens)
    for keyword in keywords:
        if keyword in token_set:
            score += 1.0
            matched.append(keyword)
        elif len(keyword) >= MIN_SUBSTRING_KEYWORD_LENGTH and any(
            keyword in token and keyword != token for token in token_set
        ):
            score += 0.5
            matched.append(keyword)
    return score, matched


def _context_boosts(context: ClassificationContext) -> List[tuple[TaskIntent, float, str]]:
    boosts: List[tuple[TaskIntent, float, str]] = []
    if context.error_present:
        boosts.append((TaskIntent.DEBUG, ERROR_PRESENT_BOOST, "context:errorPresent"))
    if context.test_file:
        boosts.append((TaskIntent.TEST, TEST_FILE_BOOST, "context:testFile"))
    if any(is_test_path(path) for path in context.recent_files):
        boosts.append((TaskIntent.TEST, RECENT_TEST_FILES_BOOST, "context:recentTestFiles"))
    return boosts


def is_test_path(path: str) -> bool:
    """Return ``True`` when ``path`` looks like a test file."""
    return _TEST_FILE_RE.search(path.replace("\\", "/").lower()) is not None


def _coerce_context(context: ClassificationContext | Mapping[str, Any] | None) -> ClassificationContext | None:
    if context is None or isinstance(context, ClassificationContext):
        return context
    if isinstance(context, Mapping):
        aliases = {"errorPresent": "error_present", "testFile": "test_file", "recentFiles": "recent_files"}
        payload = {aliases.get(key, key): value for key, value in context.items()}
        return ClassificationContext.model_validate(payload)
    raise ClassifierInputError(f"Unsupported classification context: {type(context).__name__}")


__all__ = [
    "ClassifierInputError",
    "DEFAULT_MIN_CONFIDENCE",
    "INTENT_KEYWORDS",
    "TaskIntentClassifier",
    "is_test_path",
]
