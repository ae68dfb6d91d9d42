"""Import/export extraction for indexed files.

Turns file content plus a language tag into the raw import specifiers (as
written) and exported symbol names. Each specifier also keeps the names it
binds, for usage lookups. Resolution of specifiers to files is not done
here; see :mod:`depgraph_cli.resolver`.

- Python: Tree-sitter when ``tree-sitter-python`` is installed, the
  built-in ``ast`` module otherwise. Both backends report the same shape.
- JS/TS family (incl. Vue/Svelte single-file components): regex scanning.
- Stylesheets and HTML: ``@import``/``@use`` and ``src``/``href`` scanning.

Extraction never raises; unparseable content yields empty lists.
"""

from __future__ import annotations

import ast
import importlib
import logging
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .models import UNKNOWN_LANGUAGE, Extraction

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Language <-> file-extension mapping
# ---------------------------------------------------------------------------
LANGUAGE_MAP: Dict[str, str] = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".mts": "typescript",
    ".cts": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".vue": "vue",
    ".svelte": "svelte",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".md": "markdown",
    ".mdx": "mdx",
    ".css": "css",
    ".scss": "scss",
    ".sass": "sass",
    ".less": "less",
    ".html": "html",
    ".htm": "html",
    ".py": "python",
    ".pyi": "python",
    ".rb": "ruby",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".kt": "kotlin",
    ".kts": "kotlin",
    ".swift": "swift",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".cs": "c_sharp",
    ".sh": "shell",
}

SCRIPT_LANGUAGES = frozenset({"typescript", "javascript", "vue", "svelte"})
STYLE_LANGUAGES = frozenset({"css", "scss", "sass", "less"})
MARKUP_LANGUAGES = frozenset({"html"})


def detect_language(path_or_ext: Union[str, Path]) -> str:
    """Map a path or bare extension (``".ts"``) to a language tag."""
    text = str(path_or_ext)
    ext = text if text.startswith(".") and "/" not in text else Path(text).suffix
    return LANGUAGE_MAP.get(ext.lower(), UNKNOWN_LANGUAGE)


def _unique(items: Iterable[str]) -> List[str]:
    seen: Dict[str, None] = {}
    for item in items:
        if item and item not in seen:
            seen[item] = None
    return list(seen)


def _bind(mapping: Dict[str, List[str]], specifier: str, names: Iterable[Optional[str]]) -> None:
    bound = mapping.setdefault(specifier, [])
    for name in names:
        if name and name not in bound:
            bound.append(name)


# ===================================================================
# Abstract Extractor Interface
# ===================================================================

class Extractor(ABC):
    """Abstract base class for per-language extractors."""

    @abstractmethod
    def extract(self, content: str) -> Extraction:
        tree = self._parser().parse(content.encode("utf-8"))
        root = tree.root_node
        imports: List[str] = []
        exports: List[str] = []
        bound: Dict[str, List[str]] = {}
        declared_all: Optional[List[str]] = None

        for child in root.children:
            if child.type == "import_statement":
                pairs = self._plain_imports(child)
            elif child.type == "import_from_statement":
                pairs = self._from_imports(child)
            else:
                pairs = []
            for specifier, names in pairs:
                imports.append(specifier)
                _bind(bound, specifier, names)

            if child.type in ("function_definition", "class_definition"):
                exports.append(_ts_text(child.child_by_field_name("name")))
            elif child.type == "decorated_definition":
                inner = child.child_by_field_name("definition")
                if inner is not None:
                    exports.append(_ts_text(inner.child_by_field_name("name")))
            elif child.type == "expression_statement":
                for expr in child.children:
                    if expr.type != "assignment":
                        continue
                    left = expr.child_by_field_name("left")
                    if left is None or left.type != "identifier":
                        continue
                    name = _ts_text(left)
                    if name == "__all__":
                        declared_all = self._string_items(expr.child_by_field_name("right"))
                    else:
                        exports.append(name)

        if declared_all is not None:
            exports = declared_all
        return Extraction(
            imports=_unique(imports),
            exports=_unique(n for n in exports if not n.startswith("_")),
            imported_names={spec: names for spec, names in bound.items() if names},
        )

    @staticmethod
    def _name_and_alias(node: Any) -> Tuple[str, str]:
        if node.type == "aliased_import":
            return _ts_text(node.child_by_field_name("name")), _ts_text(node.child_by_field_name("alias"))
        return _ts_text(node), ""

    def _plain_imports(self, node: Any) -> List[Tuple[str, List[str]]]:
        found: List[Tuple[str, List[str]]] = []
        for sub in node.children:
            if sub.type in ("dotted_name", "aliased_import"):
                name, alias = self._name_and_alias(sub)
                found.append((name, [name, alias]))
        return found

    def _from_imports(self, node: Any) -> List[Tuple[str, List[str]]]:
        mod_node = node.child_by_field_name("module_name")
        if mod_node is None:
            return []
        pairs = [self._name_and_alias(n) for n in node.children_by_field_name("name")]
        if mod_node.type != "relative_import" or any(
            sub.type == "dotted_name" for sub in mod_node.children
        ):
            return [(_ts_text(mod_node), [n for pair in pairs for n in pair])]

        # ``from . import a, b`` -> ".a", ".b"
        prefix = _ts_text(mod_node)
        if not pairs:
            return [(prefix, [])]
        return [(prefix + name, [name, alias]) for name, alias in pairs]

    @staticmethod
    def _string_items(node: Any) -> List[str]:
        if node is None or node.type not in ("list", "tuple"):
            return []
        items: List[str] = []
        for child in node.children:
            if child.type == "string":
                items.append(_ts_text(child).strip("'\""))
        return items


def _ts_text(node: Any) -> str:
    if node is None:
        return ""
    return node.text.decode("utf-8")


# ===================================================================
# Python: ast fallback
# ===================================================================

class ASTFallbackExtractor(Extractor):
    """Pure-Python fallback using the built-in ``ast`` module."""

    def supports_language(self, language: str) -> bool:
        return language == "python"

    def extract(self, content: str) -> Extraction:
        try:
            tree = ast.parse(content)
        except (SyntaxError, ValueError) as exc:
            logger.debug("ast could not parse content: %s", exc)
            return Extraction()

        imports: List[str] = []
        exports: List[str] = []
        bound: Dict[str, List[str]] = {}
        declared_all: Optional[List[str]] = None

        for stmt in tree.body:
            if isinstance(stmt, ast.Import):
                for alias in stmt.names:
                    imports.append(alias.name)
                    _bind(bound, alias.name, (alias.name, alias.asname))
            elif isinstance(stmt, ast.ImportFrom):
                prefix = "." * stmt.level
                if stmt.module == "__future__":
                    continue
                named = [a for a in stmt.names if a.name != "*"]
                if stmt.module:
                    imports.append(prefix + stmt.module)
                    _bind(bound, prefix + stmt.module, (n for a in named for n in (a.name, a.asname)))
                elif prefix:
                    for a in named:
                        imports.append(prefix + a.name)
                        _bind(bound, prefix + a.name, (a.name, a.asname))
                    if not named:
                        imports.append(prefix)
            elif isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                exports.append(stmt.name)
            elif isinstance(stmt, (ast.Assign, ast.AnnAssign)):
                targets = stmt.targets if isinstance(stmt, ast.Assign) else [stmt.target]
                for target in targets:
                    if not isinstance(target, ast.Name):
                        continue
                    if target.id == "__all__":
                        declared_all = _literal_strings(stmt.value)
                    else:
                        exports.append(target.id)

        if declared_all is not None:
            exports = declared_all
        return Extraction(
            imports=_unique(imports),
            exports=_unique(n for n in exports if not n.startswith("_")),
            imported_names={spec: names for spec, names in bound.items() if names},
        )


def _literal_strings(node: Optional[ast.AST]) -> List[str]:
    if not isinstance(node, (ast.List, ast.Tuple)):
        return []
    return [
        elt.value for elt in node.elts
        if isinstance(elt, ast.Constant) and isinstance(elt.value, str)
    ]


# ===================================================================
# JS / TS family
# ===================================================================

_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT_RE = re.compile(r"^\s*//.*$", re.MULTILINE)

_SCRIPT_IMPORT_RES = (
    # import x from '..' / import { a, b } from '..' (may span lines)
    re.compile(r"""^\s*import\s+(?:type\s+)?[\w*{}\s,$]+?\s+from\s+['"]([^'"]+)['"]""", re.MULTILINE),
    # import '..' (side effects only)
    re.compile(r"""^\s*import\s+['"]([^'"]+)['"]""", re.MULTILINE),
    # export * from '..' / export { a } from '..'
    re.compile(
        r"""^\s*export\s+(?:type\s+)?(?:\*(?:\s+as\s+[\w$]+)?|\{[^}]*\})\s+from\s+['"]([^'"]+)['"]""",
        re.MULTILINE,
    ),
    re.compile(r"""\brequire\(\s*['"]([^'"]+)['"]\s*\)"""),
    re.compile(r"""\bimport\(\s*['"]([^'"]+)['"]\s*\)"""),
)

_EXPORT_DEFAULT_RE = re.compile(
    r"^\s*export\s+default\s+(?:(?:abstract\s+)?class|(?:async\s+)?function\*?)?\s*([A-Za-z_$][\w$]*)?",
    re.MULTILINE,
)
_EXPORT_NAMED_RE = re.compile(
    r"^\s*export\s+(?:declare\s+)?(?:abstract\s+)?(?:async\s+)?"
    r"(?:const|let|var|function\*?|class|interface|type|enum|namespace)\s+([A-Za-z_$][\w$]*)",
    re.MULTILINE,
)
_EXPORT_LIST_RE = re.compile(r"^\s*export\s+(?:type\s+)?\{([^}]*)\}", re.MULTILINE)


_IMPORT_CLAUSE_RE = re.compile(
    r"""^\s*import\s+(?:type\s+)?([\w*{}\s,$]+?)\s+from\s+['"]([^'"]+)['"]""", re.MULTILINE,
)
_AS_RE = re.compile(r"\s+as\s+")


def _clause_names(clause: str) -> List[str]:
    """Names bound by ``React, { useState as use, type Props }`` and friends."""
    names: List[str] = []
    braces = re.search(r"\{([^}]*)\}", clause)
    head = clause[: braces.start()] + clause[braces.end():] if braces else clause
    for part in head.split(","):
        part = part.strip()
        if part.startswith("*"):
            names.extend(_AS_RE.split(part)[1:])
        elif part:
            names.append(part)
    if braces:
        for part in braces.group(1).split(","):
            part = re.sub(r"^type\s+", "", part.strip())
            names.extend(p.strip() for p in _AS_RE.split(part))
    return [n for n in names if n]


class ScriptExtractor(Extractor):
    """Regex scanner for ES modules and CommonJS."""

    def supports_language(self, language: str) -> bool:
        return language in SCRIPT_LANGUAGES

    def extract(self, content: str) -> Extraction:
        code = _LINE_COMMENT_RE.sub("", _BLOCK_COMMENT_RE.sub("", content))

        hits = []
        for pattern in _SCRIPT_IMPORT_RES:
            hits.extend((m.start(1), m.group(1)) for m in pattern.finditer(code))
        imports = _unique(spec for _, spec in sorted(hits))

        exports: List[str] = []
        for m in _EXPORT_DEFAULT_RE.finditer(code):
            name = m.group(1)
            exports.append(name if name and name != "extends" else "default")
        exports.extend(m.group(1) for m in _EXPORT_NAMED_RE.finditer(code))
        for m in _EXPORT_LIST_RE.finditer(code):
            for part in m.group(1).split(","):
                pieces = re.split(r"\s+as\s+", part.strip())
                exports.append(pieces[-1].strip())

        bound: Dict[str, List[str]] = {}
        for m in _IMPORT_CLAUSE_RE.finditer(code):
            _bind(bound, m.group(2), _clause_names(m.group(1)))
        return Extraction(
            imports=imports,
            exports=_unique(exports),
            imported_names={spec: names for spec, names in bound.items() if names},
        )


# ===================================================================
# Stylesheets / HTML
# ===================================================================

_STYLE_IMPORT_RE = re.compile(r"""@(?:import|use|forward)\s+(?:url\(\s*)?['"]([^'"]+)['"]""")
_MARKUP_REF_RE = re.compile(
    r"""<(?:script|img|source)\b[^>]*\bsrc=["']([^"']+)["']|<link\b[^>]*\bhref=["']([^"']+)["']""",
    re.IGNORECASE,
)


class StylesheetExtractor(Extractor):
    def supports_language(self, language: str) -> bool:
        return language in STYLE_LANGUAGES

    def extract(self, content: str) -> Extraction:
        code = _BLOCK_COMMENT_RE.sub("", content)
        return Extraction(imports=_unique(m.group(1) for m in _STYLE_IMPORT_RE.finditer(code)))


class MarkupExtractor(Extractor):
    def supports_language(self, language: str) -> bool:
        return language in MARKUP_LANGUAGES

    def extract(self, content: str) -> Extraction:
        refs = (m.group(1) or m.group(2) for m in _MARKUP_REF_RE.finditer(content))
        return Extraction(imports=_unique(refs))


# ===================================================================
# Dispatcher
# ===================================================================

class SymbolExtractor:
    """Selects an extractor per language; the indexer's only entry point.

    Automatically uses Tree-sitter for Python when available, otherwise
    the built-in ``ast`` module.
    """

    def __init__(self, use_tree_sitter: bool = True) -> None:
        python: Extractor = ASTFallbackExtractor()
        if use_tree_sitter:
            ts = TreeSitterPythonExtractor()
            if ts.supports_language("python"):
                python = ts
        logger.debug("Python extraction backend: %s", type(python).__name__)
        self._extractors: List[Extractor] = [
            python,
            ScriptExtractor(),
            StylesheetExtractor(),
            MarkupExtractor(),
        ]

    def supports_language(self, language: str) -> bool:
        return any(e.supports_language(language) for e in self._extractors)

    def extract(self, content: str, language: str) -> Extraction:
        for extractor in self._extractors:
            if not extractor.supports_language(language):
                continue
            try:
                return extractor.extract(content)
            except Exception as exc:
                logger.warning("%s failed on %s content: %s", type(extractor).__name__, language, exc)
                return Extraction()
        return Extraction()
