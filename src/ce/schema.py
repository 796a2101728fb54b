"""Typed records exchanged between evidence providers, the classifier and the reranker."""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Literal, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def new_evidence_id() -> str:
    """Return an opaque identifier for a freshly created evidence record."""
    return uuid4().hex


class RecordModel(BaseModel):
    """Base Pydantic model with strict field handling."""

    model_config = ConfigDict(extra="forbid", frozen=False)


class FrozenRecord(BaseModel):
    """Immutable record that may be shared freely across concurrent queries."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class SignalType(str, Enum):
    """Kinds of facts extracted from user input and the environment."""

    PATH = "path"
    SYMBOL = "symbol"
    ERROR_TOKEN = "error_token"
    STACK_FRAME = "stack_frame"


class ProviderType(str, Enum):
    """Evidence source types."""

    DIFF = "diff"
    LSP = "lsp"
    SEARCH = "search"


class ChangeType(str, Enum):
    """Change classification reported on diff evidence."""

    ADDED = "added"
    MODIFIED = "modified"
    DELETED = "deleted"


class TaskIntent(str, Enum):
    """Classified purpose of a task; ``UNKNOWN`` is a valid outcome, not an error."""

    DEBUG = "debug"
    IMPLEMENT = "implement"
    REFACTOR = "refactor"
    EXPLORE = "explore"
    TEST = "test"
    REVIEW = "review"
    UNKNOWN = "unknown"


class Signal(FrozenRecord):
    """Typed fact (path, symbol, error token, stack frame) used to filter and score evidence."""

    type: SignalType
    value: str
    source: str = "user_message"
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    metadata: Optional[Dict[str, Any]] = None

    @property
    def depth(self) -> int:
        """Call-stack depth for stack-frame signals (``0`` when unknown)."""
        if not self.metadata:
            return 0
        value = self.metadata.get("depth")
        return value if isinstance(value, int) and value >= 0 else 0

    def same_fact(self, other: Signal) -> bool:
        """Return ``True`` when ``other`` names the same fact regardless of provenance."""
        return self.type == other.type and self.value == other.value


class EvidenceMetadata(FrozenRecord):
    """Provider-specific details attached to an evidence record."""

    change_type: Optional[ChangeType] = None
    symbol_kind: Optional[Literal["definition", "reference"]] = None
    match_count: Optional[int] = None


class Evidence(FrozenRecord):
    """Scored, bounded excerpt of code eligible for prompt inclusion."""

    id: str = Field(default_factory=new_evidence_id)
    provider: ProviderType
    path: str
    range: Tuple[int, int]
    content: str
    tokens: int = Field(ge=0)
    base_score: float = Field(ge=0.0)
    matched_signals: Tuple[Signal, ...] = ()
    metadata: EvidenceMetadata = Field(default_factory=EvidenceMetadata)

    @property
    def range_key(self) -> str:
        """Key used to deduplicate evidence covering the same lines of a file."""
        return f"{self.path}:{self.range[0]}-{self.range[1]}"


class ProviderQueryOptions(FrozenRecord):
    """Per-call limits and filters handed to a provider; never stored."""

    max_results: Optional[int] = Field(default=None, ge=0)
    max_tokens: Optional[int] = None
    include_patterns: Tuple[str, ...] = ()
    exclude_patterns: Tuple[str, ...] = ()
    context_lines: Optional[int] = Field(default=None, ge=0)


class ClassificationContext(FrozenRecord):
    """Situational flags that refine intent classification."""

    error_present: bool = False
    test_file: bool = False
    recent_files: Tuple[str, ...] = ()


class RetrievalContext(FrozenRecord):
    """Environment state accompanying a task: flags, recent files, error output, working set."""

    error_present: bool = False
    test_file: bool = False
    recent_files: Tuple[str, ...] = ()
    error_output: Optional[str] = None
    working_set: Tuple[str, ...] = ()

    def classification_context(self) -> ClassificationContext:
        return ClassificationContext(
            error_present=self.error_present or bool(self.error_output),
            test_file=self.test_file,
            recent_files=self.recent_files,
        )


class ClassificationResult(FrozenRecord):
    """Outcome of a single classification call."""

    intent: TaskIntent
    confidence: float = Field(ge=0.0, le=1.0)
    signals: Tuple[str, ...] = ()
    secondary_intent: Optional[TaskIntent] = None


class BudgetRatios(FrozenRecord):
    """Fractions of the total token budget allotted to each provider type."""

    diff: float = Field(ge=0.0, le=1.0)
    lsp: float = Field(ge=0.0, le=1.0)
    search: float = Field(ge=0.0, le=1.0)

    def total(self) -> float:
        return self.diff + self.lsp + self.search

    def for_provider(self, provider: ProviderType | str) -> float:
        return float(getattr(self, ProviderType(provider).value))


class RerankerWeights(FrozenRecord):
    """Per-dimension multipliers used to compute composite evidence scores."""

    diff: float = 100.0
    stack_frame: float = 80.0
    definition: float = 60.0
    reference: float = 30.0
    keyword: float = 10.0
    working_set: float = 50.0
    stack_depth_decay: float = Field(default=0.1, ge=0.0, le=1.0)


class WeightModifiers(FrozenRecord):
    """Absolute overrides for :class:`RerankerWeights`; ``None`` leaves the base value."""

    diff: Optional[float] = None
    stack_frame: Optional[float] = None
    definition: Optional[float] = None
    reference: Optional[float] = None
    keyword: Optional[float] = None
    working_set: Optional[float] = None
    stack_depth_decay: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    def overrides(self) -> Dict[str, float]:
        """Return only the dimensions explicitly set on this record."""
        return self.model_dump(exclude_none=True)


class IntentStrategy(FrozenRecord):
    """Budget, weight and priority configuration governing ranking for one intent."""

    budget_ratios: BudgetRatios
    weight_modifiers: WeightModifiers = Field(default_factory=WeightModifiers)
    provider_priority: Tuple[ProviderType, ...] = (
        ProviderType.DIFF,
        ProviderType.LSP,
        ProviderType.SEARCH,
    )
    additional_context: Optional[Tuple[str, ...]] = None


class StrategyOverride(FrozenRecord):
    """Partial strategy; each field given replaces the default field whole."""

    budget_ratios: Optional[BudgetRatios] = None
    weight_modifiers: Optional[WeightModifiers] = None
    provider_priority: Optional[Tuple[ProviderType, ...]] = None
    additional_context: Optional[Tuple[str, ...]] = None

    def apply_to(self, strategy: IntentStrategy) -> IntentStrategy:
        """Return ``strategy`` with every explicitly set field of this override swapped in."""
        updates: Dict[str, Any] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if value is None and name != "additional_context":
                continue
            updates[name] = value
        if not updates:
            return strategy
        return strategy.model_copy(update=updates)


class StrategyFeedback(FrozenRecord):
    """Outcome reported by the caller after a task completes."""

    success: bool
    adjustments: Optional[StrategyOverride] = None


class FeedbackRecord(RecordModel):
    """Rolling success statistics for one intent."""

    sample_count: int = 0
    success_count: int = 0
    success_rate: float = 0.0

    def record(self, success: bool) -> None:
        self.sample_count += 1
        if success:
            self.success_count += 1
        self.success_rate = self.success_count / self.sample_count


class FileDiff(FrozenRecord):
    """Per-file change record produced by the snapshot diff service."""

    path: str
    type: Literal["added", "modified", "deleted", "renamed"]
    old_path: Optional[str] = None
    before_content: Optional[str] = None
    after_content: Optional[str] = None

    @field_validator("path")
    @classmethod
    def _normalise_path(cls, value: str) -> str:
        return value.replace("\\", "/")


class Patch(FrozenRecord):
    """Lightweight summary of the changes since a snapshot."""

    hash: str
    files: Tuple[str, ...] = ()


__all__ = [
    "BudgetRatios",
    "ChangeType",
    "ClassificationContext",
    "ClassificationResult",
    "Evidence",
    "EvidenceMetadata",
    "FeedbackRecord",
    "FileDiff",
    "IntentStrategy",
    "Patch",
    "ProviderQueryOptions",
    "ProviderType",
    "RerankerWeights",
    "RetrievalContext",
    "Signal",
    "SignalType",
    "StrategyFeedback",
    "StrategyOverride",
    "TaskIntent",
    "WeightModifiers",
    "new_evidence_id",
]
