from __future__ import annotations

from ce.evidence.base import (
    apply_token_budget,
    deduplicate_by_range,
    estimate_tokens,
    limit_results,
    matches_pattern,
    passes_filters,
)
from ce.schema import Evidence, ProviderQueryOptions, ProviderType


def make_evidence(path: str, tokens: int, *, start: int = 1, end: int = 10) -> Evidence:
    return Evidence(
        provider=ProviderType.SEARCH,
        path=path,
        range=(start, end),
        content="x" * (tokens * 4),
        tokens=tokens,
        base_score=10.0,
    )


def test_estimate_tokens_rounds_up_quarter_per_char() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_budget_skips_items_that_do_not_fit() -> None:
    items = [make_evidence("a.py", 40), make_evidence("b.py", 50), make_evidence("c.py", 5)]

    trimmed = apply_token_budget(items, 60)

    assert [item.path for item in trimmed] == ["a.py", "c.py"]


def test_budget_oversized_item_does_not_hide_later_small_ones() -> None:
    items = [make_evidence("a.py", 100), make_evidence("huge.py", 5000), make_evidence("c.py", 50)]

    trimmed = apply_token_budget(items, 500)

    assert [item.path for item in trimmed] == ["a.py", "c.py"]
    assert sum(item.tokens for item in trimmed) == 150


def test_budget_includes_oversized_first_item_alone() -> None:
    items = [make_evidence("big.py", 500), make_evidence("small.py", 1)]

    trimmed = apply_token_budget(items, 100)

    assert [item.path for item in trimmed] == ["big.py"]


def test_budget_zero_or_negative_returns_empty() -> None:
    items = [make_evidence("a.py", 1)]

    assert apply_token_budget(items, 0) == []
    assert apply_token_budget(items, -5) == []


def test_budget_is_idempotent_and_monotone() -> None:
    items = [make_evidence(f"f{index}.py", tokens) for index, tokens in enumerate([30, 20, 25, 40, 10])]

    for budget in (1, 30, 50, 75, 200):
        once = apply_token_budget(items, budget)
        assert apply_token_budget(once, budget) == once
        assert len(once) >= 1

    sizes = [len(apply_token_budget(items, budget)) for budget in range(1, 200, 7)]
    assert sizes == sorted(sizes)


def test_limit_results_applies_count_then_tokens() -> None:
    items = [make_evidence(f"f{index}.py", 10) for index in range(5)]

    limited = limit_results(items, ProviderQueryOptions(max_results=3, max_tokens=15))

    assert [item.path for item in limited] == ["f0.py"]
    assert len(limit_results(items, None, default_max_results=2)) == 2


def test_patterns_match_globs_and_substrings() -> None:
    assert matches_pattern("src/app/main.ts", "*.ts")
    assert matches_pattern("src/app/main.ts", "app/*.ts")
    assert matches_pattern("node_modules/lib/index.js", "node_modules")
    assert not matches_pattern("src/app/main.py", "*.ts")
    assert matches_pattern("SRC\\App\\Main.TS", "*.ts")


def test_filters_apply_include_then_exclude() -> None:
    options = ProviderQueryOptions(include_patterns=("*.py",), exclude_patterns=("tests/",))

    assert passes_filters("src/auth.py", options)
    assert not passes_filters("tests/test_auth.py", options)
    assert not passes_filters("src/auth.ts", options)
    assert passes_filters("anything.md", None)


def test_deduplicate_by_range_keeps_first() -> None:
    first = make_evidence("a.py", 1, start=1, end=5)
    duplicate = make_evidence("a.py", 2, start=1, end=5)
    other = make_evidence("a.py", 3, start=6, end=9)

    assert deduplicate_by_range([first, duplicate, other]) == [first, other]
