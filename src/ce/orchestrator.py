"""Evidence orchestrator: classify, plan budgets, fan out to providers, rerank."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import Field

from .config import RetrievalSettings
from .evidence.base import EvidenceProvider, apply_token_budget, normalize_path
from .evidence.diff_provider import DiffProvider
from .evidence.lsp_provider import LspProvider
from .evidence.search_provider import SearchProvider
from .intent.classifier import TaskIntentClassifier
from .intent.strategy import IntentStrategyProvider
from .schema import (
    ClassificationResult,
    Evidence,
    FrozenRecord,
    IntentStrategy,
    ProviderQueryOptions,
    ProviderType,
    RerankerWeights,
    RetrievalContext,
    Signal,
    SignalType,
    StrategyOverride,
    TaskIntent,
)
from .signals import SignalExtractor
from .tools.search import GitGrepSearch
from .tools.symbols import SymbolHub
from .tools.vcs import GitSnapshotService

LOGGER = logging.getLogger(__name__)

SIGNAL_MATCH_BONUS = 2.0
WEIGHT_SCALE = 100.0

# signal types each provider type consumes; other types are not forwarded
RELEVANT_SIGNALS: Dict[ProviderType, frozenset[SignalType]] = {
    ProviderType.DIFF: frozenset(SignalType),
    ProviderType.LSP: frozenset({SignalType.SYMBOL, SignalType.STACK_FRAME}),
    ProviderType.SEARCH: frozenset({SignalType.SYMBOL, SignalType.ERROR_TOKEN}),
}


class RankedEvidence(FrozenRecord):
    evidence: Evidence
    score: float


class RetrievalResult(FrozenRecord):
    """Outcome of one retrieval cycle, ranked best first."""

    classification: ClassificationResult
    strategy: IntentStrategy
    weights: RerankerWeights
    signals: Tuple[Signal, ...] = ()
    ranked: Tuple[RankedEvidence, ...] = ()
    provider_errors: Dict[str, str] = Field(default_factory=dict)

    @property
    def evidence(self) -> List[Evidence]:
        return [item.evidence for item in self.ranked]

    @property
    def total_tokens(self) -> int:
        return sum(item.evidence.tokens for item in self.ranked)


class EvidenceOrchestrator:
    """Run one retrieval cycle across the registered evidence providers.

    The cycle is: classify the task, look up the intent strategy, derive
    per-provider token budgets, query providers concurrently under a
    semaphore and per-call deadlines, trim the concatenated results to the
    total budget and sort them by composite score. A provider that is
    unavailable, raises or times out contributes nothing; the others are
    unaffected.
    """

    def __init__(
        self,
        providers: Sequence[EvidenceProvider],
        classifier: TaskIntentClassifier | None = None,
        strategy: IntentStrategyProvider | None = None,
        settings: RetrievalSettings | None = None,
        extractor: SignalExtractor | None = None,
    ) -> None:
        self._settings = settings or RetrievalSettings()
        self._providers = list(providers)
        self._classifier = classifier or TaskIntentClassifier(min_confidence=self._settings.min_confidence)
        self._strategy = strategy or IntentStrategyProvider(self._settings.strategies)
        self._extractor = extractor or SignalExtractor()

    @property
    def settings(self) -> RetrievalSettings:
        return self._settings

    @property
    def strategy_provider(self) -> IntentStrategyProvider:
        return self._strategy

    @property
    def providers(self) -> List[EvidenceProvider]:
        return list(self._providers)

    async def gather(
        self,
        task: str,
        context: RetrievalContext | Mapping[str, Any] | None = None,
        *,
        token_budget: int | None = None,
        weights: RerankerWeights | None = None,
        signals: Sequence[Signal] | None = None,
    ) -> RetrievalResult:
        retrieval_context = _coerce_context(context)
        budget = self._settings.token_budget if token_budget is None else token_budget
        baseline = weights or self._settings.weights

        classification = self._classifier.classify_with_context(task, retrieval_context.classification_context())
        strategy = self._strategy.get_strategy(classification.intent)
        effective_weights = self._strategy.apply_weight_modifiers(baseline, classification.intent)
        cycle_signals = tuple(signals) if signals is not None else self._extractor.extract(task, retrieval_context)
        LOGGER.debug(
            "Classified task as %s (%.2f); %d signal(s), budget %d",
            classification.intent.value,
            classification.confidence,
            len(cycle_signals),
            budget,
        )

        plan = self._plan(strategy, budget)
        errors: Dict[str, str] = {}
        collected = await self._fan_out(plan, cycle_signals, errors)

        # concatenation follows provider priority; trimming walks that order
        ordered: List[Evidence] = [item for results in collected for item in results]
        trimmed = apply_token_budget(ordered, budget)
        ranked = rank_evidence(trimmed, effective_weights, working_set=retrieval_context.working_set)
        LOGGER.debug(
            "Retrieved %d evidence item(s), kept %d (%d tokens)",
            len(ordered),
            len(ranked),
            sum(item.evidence.tokens for item in ranked),
        )
        return RetrievalResult(
            classification=classification,
            strategy=strategy,
            weights=effective_weights,
            signals=cycle_signals,
            ranked=tuple(ranked),
            provider_errors=errors,
        )

    def report_outcome(
        self,
        intent: TaskIntent | str,
        success: bool,
        adjustments: StrategyOverride | Mapping[str, Any] | None = None,
    ) -> None:
        """Feed a task outcome back into the strategy provider."""
        self._strategy.update_strategy(intent, {"success": success, "adjustments": adjustments})

    # ----------------------------------------------------------------- planning
    def _plan(
        self,
        strategy: IntentStrategy,
        budget: int,
    ) -> List[Tuple[EvidenceProvider, int]]:
        plan: List[Tuple[EvidenceProvider, int]] = []
        if budget <= 0:
            return plan
        for provider_type in strategy.provider_priority:
            sub_budget = math.floor(budget * strategy.budget_ratios.for_provider(provider_type))
            for provider in self._providers:
                if ProviderType(provider.type) is not provider_type:
                    continue
                if sub_budget <= 0:
                    LOGGER.debug("Skipping %s: no token budget allotted", provider.name)
                    continue
                plan.append((provider, sub_budget))
        return plan

    async def _fan_out(
        self,
        plan: Sequence[Tuple[EvidenceProvider, int]],
        signals: Tuple[Signal, ...],
        errors: Dict[str, str],
    ) -> List[List[Evidence]]:
        if not plan:
            return []
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.overall_timeout
        semaphore = asyncio.Semaphore(self._settings.max_concurrency)
        results: List[List[Evidence]] = [[] for _ in plan]

        async def run(index: int, provider: EvidenceProvider, sub_budget: int) -> None:
            async with semaphore:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    errors[provider.name] = "overall deadline exceeded"
                    LOGGER.warning("Skipping %s: overall deadline exceeded", provider.name)
                    return
                timeout = min(self._settings.provider_timeout, remaining)
                options = ProviderQueryOptions(max_tokens=sub_budget)
                try:
                    results[index] = await asyncio.wait_for(
                        _query_provider(provider, signals, options),
                        timeout=timeout,
                    )
                except asyncio.TimeoutError:
                    errors[provider.name] = f"timed out after {timeout:.1f}s"
                    LOGGER.warning("Provider %s timed out after %.1fs", provider.name, timeout)
                except Exception as error:
                    errors[provider.name] = str(error) or type(error).__name__
                    LOGGER.warning("Provider %s failed: %s", provider.name, error)

        # tasks start in creation order, so the semaphore is taken in priority order
        async with asyncio.TaskGroup() as group:
            for index, (provider, sub_budget) in enumerate(plan):
                group.create_task(run(index, provider, sub_budget))
        return results


async def _query_provider(
    provider: EvidenceProvider,
    signals: Tuple[Signal, ...],
    options: ProviderQueryOptions,
) -> List[Evidence]:
    if not await provider.is_available():
        LOGGER.debug("Provider %s unavailable; skipping", provider.name)
        return []
    results = await provider.query(relevant_signals(provider.type, signals), options)
    # providers trim themselves; enforce the sub-budget regardless
    return apply_token_budget(list(results), options.max_tokens or 0)


def relevant_signals(provider_type: ProviderType, signals: Sequence[Signal]) -> Tuple[Signal, ...]:
    """Return the subset of ``signals`` a provider of ``provider_type`` can use."""
    accepted = RELEVANT_SIGNALS.get(provider_type)
    if accepted is None:
        return tuple(signals)
    return tuple(signal for signal in signals if signal.type in accepted)


def effective_weight(
    item: Evidence,
    weights: RerankerWeights,
    working_set: Sequence[str] = (),
) -> float:
    """Return the weight applied to ``item`` when computing its composite score."""
    if item.provider is ProviderType.DIFF:
        weight = weights.diff
    elif item.provider is ProviderType.LSP:
        weight = weights.reference if item.metadata.symbol_kind == "reference" else weights.definition
    else:
        weight = weights.keyword

    frames = [signal for signal in item.matched_signals if signal.type is SignalType.STACK_FRAME]
    if frames:
        depth = min(frame.depth for frame in frames)
        weight = max(weight, weights.stack_frame) * (1.0 - weights.stack_depth_decay) ** depth

    if working_set and _in_working_set(item.path, working_set):
        weight = max(weight, weights.working_set)
    return weight


def composite_score(
    item: Evidence,
    weights: RerankerWeights,
    working_set: Sequence[str] = (),
) -> float:
    """``base_score × weight / 100`` plus a fixed bonus per matched signal."""
    weight = effective_weight(item, weights, working_set)
    return item.base_score * weight / WEIGHT_SCALE + SIGNAL_MATCH_BONUS * len(item.matched_signals)


def rank_evidence(
    evidence: Sequence[Evidence],
    weights: RerankerWeights,
    *,
    working_set: Sequence[str] = (),
) -> List[RankedEvidence]:
    """Score ``evidence`` and sort it by score, descending; ties keep input order."""
    scored = [RankedEvidence(evidence=item, score=composite_score(item, weights, working_set)) for item in evidence]
    return sorted(scored, key=lambda ranked: ranked.score, reverse=True)


def _in_working_set(path: str, working_set: Sequence[str]) -> bool:
    candidate = normalize_path(path)
    for entry in working_set:
        normalized = normalize_path(entry)
        if normalized.startswith("./"):
            normalized = normalized[2:]
        if not normalized:
            continue
        if candidate == normalized or candidate.endswith("/" + normalized) or normalized.endswith("/" + candidate):
            return True
    return False


def _coerce_context(context: RetrievalContext | Mapping[str, Any] | None) -> RetrievalContext:
    if context is None:
        return RetrievalContext()
    if isinstance(context, RetrievalContext):
        return context
    aliases = {
        "errorPresent": "error_present",
        "testFile": "test_file",
        "recentFiles": "recent_files",
        "errorOutput": "error_output",
        "workingSet": "working_set",
    }
    return RetrievalContext.model_validate({aliases.get(key, key): value for key, value in context.items()})


def build_default_providers(
    root: Path | str,
    settings: RetrievalSettings | None = None,
    *,
    snapshot_hash: Optional[str] = None,
) -> List[EvidenceProvider]:
    """Wire git-backed diff and search providers plus a libcst symbol hub for ``root``."""
    settings = settings or RetrievalSettings()
    snapshots = GitSnapshotService.for_path(root)
    repo_root = snapshots.repo.root
    hub = SymbolHub(repo_root)
    hub.index_workspace()
    return [
        DiffProvider(snapshots, snapshot_hash=snapshot_hash),
        LspProvider(
            repo_root,
            hub=hub,
            definition_timeout=settings.lsp.definition_timeout,
            reference_timeout=settings.lsp.reference_timeout,
        ),
        SearchProvider(
            repo_root,
            GitGrepSearch(snapshots.repo),
            include_patterns=settings.search.include_patterns,
            exclude_patterns=settings.search.exclude_patterns,
            max_results_per_signal=settings.search.max_results_per_signal,
            context_lines=settings.search.context_lines,
        ),
    ]


__all__ = [
    "EvidenceOrchestrator",
    "RankedEvidence",
    "RetrievalResult",
    "build_default_providers",
    "composite_score",
    "effective_weight",
    "rank_evidence",
    "relevant_signals",
]
