"""Intent-aware strategy provider mapping intents to budgets, weights and priorities."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..schema import (
    BudgetRatios,
    FeedbackRecord,
    IntentStrategy,
    ProviderType,
    RerankerWeights,
    StrategyFeedback,
    StrategyOverride,
    TaskIntent,
    WeightModifiers,
)

LOGGER = logging.getLogger(__name__)

DIFF = ProviderType.DIFF
LSP = ProviderType.LSP
SEARCH = ProviderType.SEARCH

DEFAULT_STRATEGIES: Dict[TaskIntent, IntentStrategy] = {
    TaskIntent.DEBUG: IntentStrategy(
        budget_ratios=BudgetRatios(diff=0.5, lsp=0.3, search=0.2),
        weight_modifiers=WeightModifiers(diff=150, stack_frame=120),
        provider_priority=(DIFF, LSP, SEARCH),
        additional_context=("error_logs", "recent_changes"),
    ),
    TaskIntent.IMPLEMENT: IntentStrategy(
        budget_ratios=BudgetRatios(diff=0.2, lsp=0.5, search=0.3),
        weight_modifiers=WeightModifiers(definition=80, reference=40),
        provider_priority=(LSP, SEARCH, DIFF),
        additional_context=("type_definitions", "interfaces"),
    ),
    TaskIntent.REFACTOR: IntentStrategy(
        budget_ratios=BudgetRatios(diff=0.2, lsp=0.5, search=0.3),
        weight_modifiers=WeightModifiers(definition=70, reference=60),
        provider_priority=(LSP, DIFF, SEARCH),
        additional_context=("references", "dependents"),
    ),
    TaskIntent.EXPLORE: IntentStrategy(
        budget_ratios=BudgetRatios(diff=0.2, lsp=0.3, search=0.5),
        weight_modifiers=WeightModifiers(keyword=30, definition=70),
        provider_priority=(SEARCH, LSP, DIFF),
        additional_context=("project_structure",),
    ),
    TaskIntent.TEST: IntentStrategy(
        budget_ratios=BudgetRatios(diff=0.3, lsp=0.4, search=0.3),
        weight_modifiers=WeightModifiers(definition=70, working_set=70),
        provider_priority=(LSP, DIFF, SEARCH),
        additional_context=("test_files", "test_patterns"),
    ),
    TaskIntent.REVIEW: IntentStrategy(
        budget_ratios=BudgetRatios(diff=0.6, lsp=0.2, search=0.2),
        weight_modifiers=WeightModifiers(diff=160),
        provider_priority=(DIFF, LSP, SEARCH),
        additional_context=("recent_changes", "commit_history"),
    ),
    TaskIntent.UNKNOWN: IntentStrategy(
        budget_ratios=BudgetRatios(diff=0.34, lsp=0.33, search=0.33),
        provider_priority=(DIFF, LSP, SEARCH),
    ),
}


class IntentStrategyProvider:
    """Translate a classified intent into ranking and budgeting parameters.

    Custom strategies supplied at construction are merged over the defaults
    field by field. Feedback reported through :meth:`update_strategy` is kept
    per intent for the lifetime of the instance, together with any live
    adjustments it carries.
    """

    def __init__(
        self,
        custom_strategies: Mapping[TaskIntent | str, StrategyOverride | Mapping[str, Any]] | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._configured: Dict[TaskIntent, IntentStrategy] = {}
        for intent, default in DEFAULT_STRATEGIES.items():
            self._configured[intent] = default
        for key, override in (custom_strategies or {}).items():
            intent = normalize_intent(key)
            self._configured[intent] = _coerce_override(override).apply_to(self._configured[intent])
        self._live: Dict[TaskIntent, IntentStrategy] = dict(self._configured)
        self._feedback: Dict[TaskIntent, FeedbackRecord] = {}

    def get_strategy(self, intent: TaskIntent | str) -> IntentStrategy:
        key = normalize_intent(intent)
        with self._lock:
            return self._live[key]

    def get_budget_ratios(self, intent: TaskIntent | str) -> BudgetRatios:
        return self.get_strategy(intent).budget_ratios

    def apply_weight_modifiers(self, base_weights: RerankerWeights, intent: TaskIntent | str) -> RerankerWeights:
        """Return a copy of ``base_weights`` with the intent's modifiers swapped in."""
        overrides = self.get_strategy(intent).weight_modifiers.overrides()
        if not overrides:
            return base_weights.model_copy()
        return base_weights.model_copy(update=overrides)

    def update_strategy(
        self,
        intent: TaskIntent | str,
        feedback: StrategyFeedback | Mapping[str, Any],
    ) -> None:
        """Record a task outcome and apply any adjustments it carries."""
        key = normalize_intent(intent)
        report = _coerce_feedback(feedback)
        with self._lock:
            record = self._feedback.setdefault(key, FeedbackRecord())
            record.record(report.success)
            if report.adjustments is not None:
                self._live[key] = report.adjustments.apply_to(self._live[key])
            LOGGER.debug(
                "Feedback for %s: %d sample(s), success rate %.2f",
                key.value,
                record.sample_count,
                record.success_rate,
            )

    def get_feedback_stats(self, intent: TaskIntent | str) -> Optional[FeedbackRecord]:
        """Return a snapshot of the feedback for ``intent`` or ``None`` before any report."""
        key = normalize_intent(intent)
        with self._lock:
            record = self._feedback.get(key)
            return record.model_copy() if record is not None else None

    def reset_feedback(self) -> None:
        with self._lock:
            self._feedback.clear()

    def reset(self) -> None:
        """Drop feedback and live adjustments, returning to the configured strategies."""
        with self._lock:
            self._feedback.clear()
            self._live = dict(self._configured)


def normalize_intent(intent: TaskIntent | str) -> TaskIntent:
    """Resolve ``intent`` into a concrete ``TaskIntent`` enum member."""
    if isinstance(intent, TaskIntent):
        return intent
    try:
        return TaskIntent(intent)
    except ValueError as error:
        valid = ", ".join(item.value for item in TaskIntent)
        raise KeyError(f"Unknown intent '{intent}'. Expected one of: {valid}") from error


def _coerce_override(value: StrategyOverride | Mapping[str, Any]) -> StrategyOverride:
    if isinstance(value, StrategyOverride):
        return value
    try:
        return StrategyOverride.model_validate(value)
    except ValidationError as error:
        raise ValueError(f"Strategy override did not validate: {error}") from error


def _coerce_feedback(value: StrategyFeedback | Mapping[str, Any]) -> StrategyFeedback:
    if isinstance(value, StrategyFeedback):
        return value
    try:
        return StrategyFeedback.model_validate(value)
    except ValidationError as error:
        raise ValueError(f"Strategy feedback did not validate: {error}") from error


__all__ = ["DEFAULT_STRATEGIES", "IntentStrategyProvider", "normalize_intent"]
