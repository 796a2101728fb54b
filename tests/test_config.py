from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from ce.config import RetrievalSettings, SettingsError, load_settings, settings_from_mapping
from ce.intent.strategy import IntentStrategyProvider
from ce.schema import TaskIntent


def write_config(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "evidence.yaml"
    path.write_text(textwrap.dedent(body).lstrip(), encoding="utf-8")
    return path


def test_missing_file_yields_defaults(tmp_path: Path) -> None:
    settings = load_settings(tmp_path / "absent.yaml")

    assert settings == RetrievalSettings()
    assert settings.token_budget == 8000
    assert settings.provider_timeout == 5.0
    assert settings.overall_timeout == 15.0
    assert settings.max_concurrency == 3
    assert settings.weights.diff == 100


def test_evidence_section_is_loaded(tmp_path: Path) -> None:
    path = write_config(
        tmp_path,
        """
        project:
          name: demo
        evidence:
          token_budget: 4000
          weights:
            keyword: 15
          search:
            exclude_patterns: ["vendor/"]
            context_lines: 1
          lsp:
            reference_timeout: 2.5
          strategies:
            explore:
              budget_ratios: {diff: 0.1, lsp: 0.2, search: 0.7}
        """,
    )

    settings = load_settings(path)

    assert settings.token_budget == 4000
    assert settings.weights.keyword == 15
    assert settings.weights.definition == 60
    assert settings.search.exclude_patterns == ("vendor/",)
    assert settings.search.context_lines == 1
    assert settings.lsp.reference_timeout == 2.5
    strategies = IntentStrategyProvider(settings.strategies)
    assert strategies.get_budget_ratios(TaskIntent.EXPLORE).search == 0.7
    assert strategies.get_strategy(TaskIntent.EXPLORE).provider_priority[0].value == "search"


def test_bare_mapping_is_accepted() -> None:
    settings = settings_from_mapping({"max_concurrency": 1})

    assert settings.max_concurrency == 1


@pytest.mark.parametrize(
    "body",
    [
        "evidence:\n  token_budget: -1\n",
        "evidence:\n  unknown_knob: true\n",
        "evidence:\n  provider_timeout: 20\n  overall_timeout: 10\n",
        "evidence:\n  strategies:\n    deploy: {}\n",
        "evidence: [1, 2]\n",
        "- just\n- a list\n",
        "evidence: {token_budget: [unclosed\n",
    ],
)
def test_invalid_settings_raise(tmp_path: Path, body: str) -> None:
    path = tmp_path / "evidence.yaml"
    path.write_text(body, encoding="utf-8")

    with pytest.raises(SettingsError):
        load_settings(path)
