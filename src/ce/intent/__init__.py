"""Convenience exports for intent classification and strategy lookup."""

from .classifier import ClassifierInputError, TaskIntentClassifier, is_test_path
from .strategy import DEFAULT_STRATEGIES, IntentStrategyProvider, normalize_intent

__all__ = [
    "ClassifierInputError",
    "DEFAULT_STRATEGIES",
    "IntentStrategyProvider",
    "TaskIntentClassifier",
    "is_test_path",
    "normalize_intent",
]
