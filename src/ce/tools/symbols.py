"""In-memory symbol hub built from libcst metadata for definition/reference lookups."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import libcst as cst
from libcst import metadata

LOGGER = logging.getLogger(__name__)

_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_SKIP_DIRS = {".git", "__pycache__", ".venv", "venv", "node_modules", ".mypy_cache", ".pytest_cache"}

Location = Dict[str, Any]


@dataclass(frozen=True)
class SymbolRecord:
    """Python symbol definition with zero-based line positions."""

    name: str
    qualified_name: str
    kind: str
    path: str
    signature: str
    start_line: int
    end_line: int
    name_line: int
    name_column: int


class _SymbolCollector(cst.CSTVisitor):
    """Collect class, function and method definitions with their positions."""

    METADATA_DEPENDENCIES = (
        metadata.PositionProvider,
        metadata.QualifiedNameProvider,
    )

    def __init__(self, path_key: str, module: cst.Module) -> None:
        self._path_key = path_key
        self._module = module
        self._class_stack: List[str] = []
        self.records: List[SymbolRecord] = []

    def visit_ClassDef(self, node: cst.ClassDef) -> None:
        bases = [self._module.code_for_node(base.value) for base in node.bases]
        signature = f"class {node.name.value}"
        if bases:
            signature = f"{signature}({', '.join(bases)})"
        self._record(node, node.name, "class", signature)
        self._class_stack.append(node.name.value)

    def leave_ClassDef(self, original_node: cst.ClassDef) -> None:
        if self._class_stack:
            self._class_stack.pop()

    def visit_FunctionDef(self, node: cst.FunctionDef) -> None:
        params = self._module.code_for_node(node.params)
        signature = f"{node.name.value}({params})"
        if node.returns is not None:
            annotation = self._module.code_for_node(node.returns.annotation)
            signature = f"{signature} -> {annotation}"
        kind = "method" if self._class_stack else "function"
        self._record(node, node.name, kind, signature)

    def _record(self, node: cst.CSTNode, name: cst.Name, kind: str, signature: str) -> None:
        span = self.get_metadata(metadata.PositionProvider, node)
        name_span = self.get_metadata(metadata.PositionProvider, name)
        self.records.append(
            SymbolRecord(
                name=name.value,
                qualified_name=self._qualified_name(node) or name.value,
                kind=kind,
                path=self._path_key,
                signature=signature,
                start_line=span.start.line - 1,
                end_line=span.end.line - 1,
                name_line=name_span.start.line - 1,
                name_column=name_span.start.column,
            )
        )

    def _qualified_name(self, node: cst.CSTNode) -> Optional[str]:
        qualified_names = self.get_metadata(metadata.QualifiedNameProvider, node, default=None)
        if not qualified_names:
            return None
        for qualified in qualified_names:
            if qualified.source is metadata.QualifiedNameSource.LOCAL:
                return qualified.name
        return next(iter(qualified_names)).name


class SymbolHub:
    """Language-server stand-in for Python sources.

    Answers ``definition`` and ``references`` queries with LSP-shaped locations
    (``uri`` plus zero-based ``range``) from symbols indexed in memory.
    """

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root).resolve()
        self._records_by_path: Dict[str, List[SymbolRecord]] = {}
        self._lines_by_path: Dict[str, List[str]] = {}

    @property
    def root(self) -> Path:
        return self._root

    def is_initialized(self) -> bool:
        return bool(self._records_by_path)

    def index_file(self, path: Path | str, source: str) -> None:
        path_key = self._path_key(path)
        self._lines_by_path[path_key] = source.splitlines()
        try:
            module = cst.parse_module(source)
        except cst.ParserSyntaxError as error:
            LOGGER.debug("Skipping unparsable source %s: %s", path_key, error)
            self._records_by_path.pop(path_key, None)
            return

        wrapper = metadata.MetadataWrapper(module)
        collector = _SymbolCollector(path_key=path_key, module=module)
        wrapper.visit(collector)
        self._records_by_path[path_key] = collector.records

    def index_workspace(self, paths: Iterable[Path | str] | None = None) -> int:
        """Index ``paths`` (defaults to every ``*.py`` under the root); return the file count."""

        candidates = list(paths) if paths is not None else self._discover_sources()
        indexed = 0
        for candidate in candidates:
            absolute = Path(candidate)
            if not absolute.is_absolute():
                absolute = self._root / absolute
            try:
                source = absolute.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as error:
                LOGGER.debug("Unable to read %s: %s", absolute, error)
                continue
            self.index_file(absolute, source)
            indexed += 1
        LOGGER.debug("Indexed %d Python file(s) under %s", indexed, self._root)
        return indexed

    def query(self, symbol_name: str) -> List[SymbolRecord]:
        results: List[SymbolRecord] = []
        for records in self._records_by_path.values():
            for record in records:
                if record.name == symbol_name or record.qualified_name.endswith(f".{symbol_name}"):
                    results.append(record)
        return results

    def symbol_at(self, file_path: str, line: int, character: int) -> str | None:
        """Return the identifier under the cursor, or the enclosing definition's name."""

        path_key = self._path_key(file_path)
        lines = self._lines_by_path.get(path_key)
        if lines is None or not 0 <= line < len(lines):
            return None
        for match in _IDENTIFIER_RE.finditer(lines[line]):
            if match.start() <= character < match.end():
                return match.group(0)
        enclosing = [
            record
            for record in self._records_by_path.get(path_key, [])
            if record.start_line <= line <= record.end_line
        ]
        if not enclosing:
            return None
        innermost = min(enclosing, key=lambda record: record.end_line - record.start_line)
        return innermost.name

    def definition(self, file_path: str, line: int, character: int) -> List[Location]:
        name = self.symbol_at(file_path, line, character)
        if name is None:
            return []
        return [
            _location(record.path, record.start_line, 0, record.end_line, 0)
            for record in self.query(name)
        ]

    def references(
        self,
        file_path: str,
        line: int,
        character: int,
        include_declaration: bool = False,
    ) -> List[Location]:
        name = self.symbol_at(file_path, line, character)
        if name is None:
            return []
        declarations = {(record.path, record.name_line) for record in self.query(name)}
        pattern = re.compile(rf"\b{re.escape(name)}\b")
        locations: List[Location] = []
        for path_key, lines in sorted(self._lines_by_path.items()):
            for index, text in enumerate(lines):
                match = pattern.search(text)
                if match is None:
                    continue
                if not include_declaration and (path_key, index) in declarations:
                    continue
                locations.append(_location(path_key, index, match.start(), index, match.end()))
        return locations

    def _discover_sources(self) -> List[Path]:
        sources: List[Path] = []
        for path in sorted(self._root.rglob("*.py")):
            relative = path.relative_to(self._root)
            if any(part in _SKIP_DIRS for part in relative.parts):
                continue
            sources.append(path)
        return sources

    def _path_key(self, path: Path | str) -> str:
        candidate = Path(path)
        if candidate.is_absolute():
            try:
                candidate = candidate.resolve().relative_to(self._root)
            except ValueError:
                return candidate.as_posix()
        return candidate.as_posix()


def _location(path: str, start_line: int, start_char: int, end_line: int, end_char: int) -> Location:
    return {
        "uri": path,
        "range": {
            "start": {"line": start_line, "character": start_char},
            "end": {"line": end_line, "character": end_char},
        },
    }


__all__ = ["SymbolHub", "SymbolRecord"]
