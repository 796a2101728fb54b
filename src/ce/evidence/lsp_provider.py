"""Evidence provider resolving symbol definitions and references through an LSP hub."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional, Protocol
from urllib.parse import unquote, urlparse

from ..schema import Evidence, EvidenceMetadata, ProviderQueryOptions, ProviderType, Signal, SignalType
from .base import deduplicate_by_range, estimate_tokens, limit_results, passes_filters

LOGGER = logging.getLogger(__name__)

DEFINITION_WEIGHT = 60.0
REFERENCE_WEIGHT = 30.0
DEFAULT_DEFINITION_TIMEOUT = 5.0
DEFAULT_REFERENCE_TIMEOUT = 10.0
DEFAULT_CONTEXT_LINES = 5
DEFAULT_MAX_RESULTS = 50

SymbolKind = Literal["definition", "reference"]


class LspHub(Protocol):
    """Subset of a language-server hub used by :class:`LspProvider`.

    Methods may be plain or ``async``; locations follow the LSP ``Location``
    shape (``uri`` plus a zero-based ``range``).
    """

    def definition(self, file_path: str, line: int, character: int) -> Any:
        ...

    def references(
        self,
        file_path: str,
        line: int,
        character: int,
        include_declaration: bool = False,
    ) -> Any:
        ...


class LspProvider:
    """Evidence provider extracting definitions (weight 60) and references (weight 30)."""

    type = ProviderType.LSP
    name = "LSP Analysis"
    base_weight = DEFINITION_WEIGHT

    def __init__(
        self,
        workspace_root: Path | str,
        *,
        hub: LspHub | None = None,
        definition_timeout: float = DEFAULT_DEFINITION_TIMEOUT,
        reference_timeout: float = DEFAULT_REFERENCE_TIMEOUT,
    ) -> None:
        self._workspace_root = Path(workspace_root)
        self._hub = hub
        self._definition_timeout = definition_timeout
        self._reference_timeout = reference_timeout

    def set_hub(self, hub: LspHub | None) -> None:
        """Bind the hub late, once the language servers are up."""
        self._hub = hub

    async def is_available(self) -> bool:
        hub = self._hub
        if hub is None:
            return False
        probe = getattr(hub, "is_initialized", None)
        if not callable(probe):
            return True
        try:
            return bool(await _invoke(probe))
        except Exception as error:
            LOGGER.debug("LSP hub probe failed: %s", error)
            return False

    async def query(
        self,
        signals: Sequence[Signal],
        options: ProviderQueryOptions | None = None,
    ) -> List[Evidence]:
        hub = self._hub
        if hub is None:
            return []

        relevant = [signal for signal in signals if signal.type is SignalType.SYMBOL]
        relevant.extend(signal for signal in signals if signal.type is SignalType.STACK_FRAME)
        if not relevant:
            return []

        max_results = (
            options.max_results if options is not None and options.max_results is not None else DEFAULT_MAX_RESULTS
        )
        line_cache: Dict[str, Optional[List[str]]] = {}
        evidence: List[Evidence] = []
        for signal in relevant:
            if len(evidence) >= max_results:
                break
            position = _position_for(signal)
            if position is None:
                continue
            file_path, line, character = position
            for kind, call, timeout, weight in (
                (
                    "definition",
                    lambda: hub.definition(file_path, line, character),
                    self._definition_timeout,
                    DEFINITION_WEIGHT,
                ),
                (
                    "reference",
                    lambda: hub.references(file_path, line, character, False),
                    self._reference_timeout,
                    REFERENCE_WEIGHT,
                ),
            ):
                try:
                    locations = await asyncio.wait_for(_invoke(call), timeout=timeout)
                except asyncio.TimeoutError:
                    LOGGER.warning("LSP %s query for %s timed out after %.1fs", kind, signal.value, timeout)
                    continue
                except Exception as error:
                    LOGGER.warning("LSP %s query for %s failed: %s", kind, signal.value, error)
                    continue
                evidence.extend(
                    await self._locations_to_evidence(locations, signal, kind, weight, options, line_cache)
                )

        deduped = deduplicate_by_range(evidence)
        return limit_results(deduped, options, default_max_results=max_results)

    # ---------------------------------------------------------------- helpers
    async def _locations_to_evidence(
        self,
        locations: Any,
        signal: Signal,
        kind: SymbolKind,
        weight: float,
        options: ProviderQueryOptions | None,
        line_cache: Dict[str, Optional[List[str]]],
    ) -> List[Evidence]:
        if not isinstance(locations, Sequence):
            return []
        context_lines = (
            options.context_lines if options is not None and options.context_lines is not None else DEFAULT_CONTEXT_LINES
        )
        evidence: List[Evidence] = []
        for location in locations:
            parsed = _parse_location(location)
            if parsed is None:
                continue
            path, start, end = parsed
            if not passes_filters(path, options):
                continue
            start_line = max(1, start + 1 - context_lines)
            end_line = end + 1 + context_lines
            lines = await self._load_lines(path, line_cache)
            content = _slice_lines(lines, start_line, end_line)
            if content is None:
                content = f"[LSP {kind}: {signal.value}]"
            else:
                end_line = min(end_line, start_line + content.count("\n"))
            evidence.append(
                Evidence(
                    provider=ProviderType.LSP,
                    path=path,
                    range=(start_line, end_line),
                    content=content,
                    tokens=estimate_tokens(content),
                    base_score=weight * signal.confidence,
                    matched_signals=(signal,),
                    metadata=EvidenceMetadata(symbol_kind=kind),
                )
            )
        return evidence

    async def _load_lines(
        self,
        path: str,
        line_cache: Dict[str, Optional[List[str]]],
    ) -> Optional[List[str]]:
        if path not in line_cache:
            candidate = Path(path)
            if not candidate.is_absolute():
                candidate = self._workspace_root / candidate
            line_cache[path] = await asyncio.to_thread(_read_lines, candidate)
        return line_cache[path]


def _read_lines(path: Path) -> Optional[List[str]]:
    try:
        return path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError:
        return None


def _slice_lines(lines: Optional[List[str]], start_line: int, end_line: int) -> str | None:
    if not lines:
        return None
    selected = lines[start_line - 1 : end_line]
    if not selected:
        return None
    return "\n".join(selected)


async def _invoke(call: Callable[[], Any]) -> Any:
    """Run ``call`` off the event loop, awaiting its result when it is a coroutine."""
    result = await asyncio.to_thread(call)
    if inspect.isawaitable(result):
        result = await result
    return result


def _position_for(signal: Signal) -> tuple[str, int, int] | None:
    metadata = signal.metadata or {}
    path = metadata.get("path")
    line = metadata.get("line")
    if not isinstance(path, str) or not path or not isinstance(line, int):
        return None
    character = metadata.get("character")
    return path, line, character if isinstance(character, int) else 0


def _parse_location(location: Any) -> tuple[str, int, int] | None:
    if not isinstance(location, Mapping):
        return None
    uri = location.get("uri")
    span = location.get("range")
    if not isinstance(uri, str) or not isinstance(span, Mapping):
        return None
    path = _uri_to_path(uri)
    if not path:
        return None
    try:
        start = int(span["start"]["line"])
        end = int(span["end"]["line"])
    except (KeyError, TypeError, ValueError):
        return None
    return path, start, max(start, end)


def _uri_to_path(uri: str) -> str | None:
    if uri.startswith("file://"):
        parsed = urlparse(uri)
        return unquote(parsed.path) or None
    return uri or None


__all__ = ["DEFINITION_WEIGHT", "LspHub", "LspProvider", "REFERENCE_WEIGHT"]
