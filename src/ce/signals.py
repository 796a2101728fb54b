"""Extract typed signals from task text, error output and the working set."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import List

from .schema import RetrievalContext, Signal, SignalType

__all__ = ["SignalExtractor", "extract_signals"]

_PATH_RE = re.compile(r"(?<![\w@])((?:[\w.\-]+/)*[\w\-]+\.[A-Za-z][A-Za-z0-9]{0,5})(?![\w/])")
_ERROR_NAME_RE = re.compile(r"\b([A-Z][A-Za-z0-9]*(?:Error|Exception|Warning|Fault))\b")
_ERROR_CODE_RE = re.compile(r"\b(E[A-Z]{3,}|ERR_[A-Z0-9_]+)\b")
_BACKTICK_RE = re.compile(r"`([^`\s]+)`")
_CALL_RE = re.compile(r"\b([A-Za-z_][A-Za-z0-9_.]*)\(\)")
_CAMEL_RE = re.compile(r"\b([a-z]+(?:[A-Z][a-z0-9]*)+|[A-Z][a-z0-9]+(?:[A-Z][a-z0-9]*)+)\b")
_SNAKE_RE = re.compile(r"\b([a-z][a-z0-9]*(?:_[a-z0-9]+)+)\b")
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")

# Node: "at handler (src/app.ts:12:5)" / "at src/app.ts:12:5"
_NODE_FRAME_RE = re.compile(r"^\s*at\s+(?:(?P<func>[^\s(]+)\s+\()?(?P<path>[^\s():]+):(?P<line>\d+)(?::(?P<col>\d+))?\)?")
# Python: 'File "src/app.py", line 12, in handler'
_PY_FRAME_RE = re.compile(r'^\s*File "(?P<path>[^"]+)", line (?P<line>\d+)(?:, in (?P<func>[\w<>.]+))?')

_FILE_EXTENSIONS_TO_IGNORE = {"e.g", "i.e", "etc"}


class SignalExtractor:
    """Turn free text and environment state into deduplicated :class:`Signal` records.

    Stack-frame signals carry LSP-style zero-based ``line``/``character``
    positions plus their ``depth`` in the trace (``0`` is the innermost frame
    reported first).
    """

    def __init__(self, *, working_set_confidence: float = 0.5) -> None:
        self._working_set_confidence = working_set_confidence

    def extract(self, text: str, context: RetrievalContext | None = None) -> tuple[Signal, ...]:
        error_output = context.error_output if context is not None else None
        working_set = context.working_set if context is not None else ()
        signals: List[Signal] = []
        signals.extend(self._from_text(text or "", source="user_message", confidence=1.0))
        if error_output:
            signals.extend(self._stack_frames(error_output))
            signals.extend(self._from_text(error_output, source="error_output", confidence=0.8))
        for path in working_set:
            if path:
                signals.append(
                    Signal(
                        type=SignalType.PATH,
                        value=path.replace("\\", "/"),
                        source="working_set",
                        confidence=self._working_set_confidence,
                    )
                )
        return _dedupe(signals)

    def _from_text(self, text: str, *, source: str, confidence: float) -> List[Signal]:
        signals: List[Signal] = []
        paths = set()
        for match in _PATH_RE.finditer(text):
            value = match.group(1)
            if value.lower() in _FILE_EXTENSIONS_TO_IGNORE or value[0] == ".":
                continue
            paths.add(value)
            signals.append(Signal(type=SignalType.PATH, value=value, source=source, confidence=confidence))

        error_names = set()
        for regex in (_ERROR_NAME_RE, _ERROR_CODE_RE):
            for match in regex.finditer(text):
                error_names.add(match.group(1))
                signals.append(
                    Signal(type=SignalType.ERROR_TOKEN, value=match.group(1), source=source, confidence=confidence)
                )

        for regex, weight in ((_BACKTICK_RE, 1.0), (_CALL_RE, 0.9), (_CAMEL_RE, 0.7), (_SNAKE_RE, 0.7)):
            for match in regex.finditer(text):
                value = match.group(1).rstrip("()")
                if value in error_names or value in paths or not _IDENTIFIER_RE.match(value):
                    continue
                if any(value in path for path in paths):
                    continue
                signals.append(
                    Signal(
                        type=SignalType.SYMBOL,
                        value=value.rsplit(".", 1)[-1],
                        source=source,
                        confidence=round(confidence * weight, 3),
                    )
                )
        return signals

    def _stack_frames(self, error_output: str) -> List[Signal]:
        frames: List[Signal] = []
        depth = 0
        python_style = False
        for line in error_output.splitlines():
            match = _NODE_FRAME_RE.match(line)
            if match is None:
                match = _PY_FRAME_RE.match(line)
                if match is None:
                    continue
                python_style = True
            path = match.group("path")
            line_number = int(match.group("line"))
            column = match.groupdict().get("col")
            function = match.group("func") or ""
            frames.append(
                Signal(
                    type=SignalType.STACK_FRAME,
                    value=function or f"{path}:{line_number}",
                    source="stack_trace",
                    confidence=1.0,
                    metadata={
                        "path": path,
                        "line": max(0, line_number - 1),
                        "character": max(0, int(column) - 1) if column else 0,
                        "depth": depth,
                        "function": function or None,
                    },
                )
            )
            depth += 1
        if frames and python_style:
            # Python tracebacks list the innermost frame last.
            total = len(frames)
            frames = [
                frame.model_copy(update={"metadata": {**(frame.metadata or {}), "depth": total - 1 - frame.depth}})
                for frame in frames
            ]
        return frames


def _dedupe(signals: Iterable[Signal]) -> tuple[Signal, ...]:
    result: List[Signal] = []
    for signal in signals:
        # frames are positional; the same function may appear at several depths
        if signal.type is SignalType.STACK_FRAME:
            result.append(signal)
            continue
        existing = next((index for index, known in enumerate(result) if known.same_fact(signal)), None)
        if existing is None:
            result.append(signal)
        elif signal.confidence > result[existing].confidence:
            result[existing] = signal
    return tuple(result)


def extract_signals(text: str, context: RetrievalContext | None = None) -> tuple[Signal, ...]:
    """Module-level convenience wrapper around :class:`SignalExtractor`."""
    return SignalExtractor().extract(text, context)
