"""Tree-sitter front end for TypeScript / JavaScript sources.

The parser is the only place that touches raw text: it selects a grammar
by file extension, produces a concrete syntax tree, and hands the tree to
:func:`codecontext.extractor.extract_entities`.  Tree-sitter is
error-tolerant, so files with minor syntax errors still yield entities.
"""

from __future__ import annotations

import importlib
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from .errors import ExtractionError
from .extractor import extract_entities
from .models import CodeEntity

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Grammar <-> file-extension mapping
# ---------------------------------------------------------------------------
LANGUAGE_MAP: Dict[str, str] = {
    ".ts": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".js": "typescript",
    ".mjs": "typescript",
    ".cjs": "typescript",
    ".tsx": "tsx",
    ".jsx": "tsx",
}

SKIP_DIRS: Set[str] = {
    "node_modules", ".git", "dist", "build", "coverage",
    ".next", ".turbo", ".cache", "out", ".codecontext",
}

# grammar name -> (module, factory attribute)
_GRAMMAR_MODULES: Dict[str, Tuple[str, str]] = {
    "typescript": ("tree_sitter_typescript", "language_typescript"),
    "tsx": ("tree_sitter_typescript", "language_tsx"),
}


class TreeSitterParser:
    """Grammar-per-extension wrapper around ``tree_sitter.Parser``.

    Grammars are loaded lazily on first use and cached, so constructing a
    parser is cheap and a missing grammar only fails the files that need it.
    """

    def __init__(self) -> None:
        self._parsers: Dict[str, Any] = {}

    @staticmethod
    def grammar_for(file_path: str) -> Optional[str]:
        return LANGUAGE_MAP.get(Path(file_path).suffix.lower())

    def supports(self, file_path: str) -> bool:
        return self.grammar_for(file_path) is not None

    def _get_parser(self, grammar: str) -> Any:
        parser = self._parsers.get(grammar)
        if parser is not None:
            return parser

        from tree_sitter import Language, Parser as TSParser

        mod_name, factory = _GRAMMAR_MODULES[grammar]
        mod = importlib.import_module(mod_name)
        # tree-sitter >=0.22 grammar packages expose a function returning
        # the Language capsule.
        ts_lang = Language(getattr(mod, factory)())
        parser = TSParser(ts_lang)
        self._parsers[grammar] = parser
        logger.debug("Loaded tree-sitter grammar %s", grammar)
        return parser

    def parse(self, source: str, file_path: str) -> Any:
        """Parse *source* with the grammar selected by *file_path*'s extension."""
        grammar = self.grammar_for(file_path)
        if grammar is None:
            raise ExtractionError("no grammar for this file extension", file_path)
        return self._get_parser(grammar).parse(source.encode("utf-8"))

    def parse_entities(self, source: str, file_path: str) -> List[CodeEntity]:
        tree = self.parse(source, file_path)
        return extract_entities(tree, file_path, source)

    def parse_file(self, path: Path, root: Optional[Path] = None) -> List[CodeEntity]:
        """Read *path* from disk and extract its entities.

        The entity ``file`` attribute is relative to *root* when given.
        """
        source = path.read_text(encoding="utf-8", errors="ignore")
        rel_path = path.relative_to(root).as_posix() if root else path.as_posix()
        return self.parse_entities(source, rel_path)

    # ------------------------------------------------------------------
    # Project-level discovery
    # ------------------------------------------------------------------

    def iter_source_files(self, project_root: Path) -> List[Path]:
        """All supported files under *project_root*, sorted, skipping vendored dirs."""
        files: List[Path] = []
        for file_path in sorted(project_root.rglob("*")):
            if not file_path.is_file() or not self.supports(file_path.name):
                continue
            if any(part in SKIP_DIRS for part in file_path.relative_to(project_root).parts):
                continue
            files.append(file_path)
        return files
