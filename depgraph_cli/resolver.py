"""Resolve raw import specifiers to project file identities.

Only intra-project structure is modelled: a specifier either names another
indexed file (``resolved``), points outside the project (``external``), or
looks relative but matches nothing indexed (``unresolved``).
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from pathlib import Path, PurePath
from typing import Container, Dict, List, Optional, Tuple

from .parser import MARKUP_LANGUAGES, SCRIPT_LANGUAGES, STYLE_LANGUAGES

logger = logging.getLogger(__name__)

RESOLVED = "resolved"
EXTERNAL = "external"
UNRESOLVED = "unresolved"

# Candidate suffixes tried in order; first indexed candidate wins.
_SCRIPT_SUFFIXES: Tuple[str, ...] = (
    "", ".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs", ".vue", ".svelte", ".json",
    "/index.ts", "/index.tsx", "/index.js", "/index.jsx",
)
_PYTHON_SUFFIXES: Tuple[str, ...] = (".py", ".pyi", "/__init__.py")
_STYLE_SUFFIXES: Tuple[str, ...] = ("", ".css", ".scss", ".sass", ".less")
_EXACT_ONLY: Tuple[str, ...] = ("",)

_FAMILY_BY_LANGUAGE: Dict[str, str] = {
    **{lang: "script" for lang in SCRIPT_LANGUAGES},
    **{lang: "style" for lang in STYLE_LANGUAGES},
    **{lang: "markup" for lang in MARKUP_LANGUAGES},
    "python": "python",
}


@dataclass(frozen=True)
class Resolution:
    status: str
    identity: Optional[str] = None
    reason: str = ""

    @property
    def is_resolved(self) -> bool:
        return self.status == RESOLVED

    @property
    def is_external(self) -> bool:
        return self.status == EXTERNAL

    @classmethod
    def resolved(cls, identity: str) -> "Resolution":
        return cls(RESOLVED, identity)

    @classmethod
    def external(cls) -> "Resolution":
        return cls(EXTERNAL)

    @classmethod
    def unresolved(cls, reason: str) -> "Resolution":
        return cls(UNRESOLVED, reason=reason)


def normalize_identity(path: str) -> Optional[str]:
    """Normalize a root-relative path; ``None`` if it escapes the root."""
    text = path.replace("\\", "/")
    if not text or text.startswith("/"):
        return None
    norm = posixpath.normpath(text)
    if norm == "." or norm == ".." or norm.startswith("../"):
        return None
    return norm


def to_identity(file_path: Path, root: Path) -> str:
    """Identity of *file_path* relative to *root* (``/`` separated)."""
    rel = PurePath(file_path).relative_to(root)
    identity = normalize_identity(rel.as_posix())
    if identity is None:
        raise ValueError(f"{file_path} is not inside {root}")
    return identity


class ImportResolver:
    """Turns ``(specifier, importing file)`` into a :class:`Resolution`.

    The importing file's language selects the family: which specifiers
    count as relative and which candidate suffixes are tried.
    """

    def resolve(
        self,
        specifier: str,
        from_identity: str,
        known_identities: Container[str],
        language: Optional[str] = None,
    ) -> Resolution:
        family = _FAMILY_BY_LANGUAGE.get(language or "", "generic")
        spec = specifier.strip()
        if not spec:
            return Resolution.unresolved("empty specifier")

        if family == "python":
            if not spec.startswith("."):
                return Resolution.external()
            candidates = self._python_candidates(spec, from_identity)
        else:
            if family in ("style", "markup"):
                spec = spec.split("?", 1)[0].split("#", 1)[0]
            if not self._is_relative(spec, family):
                return Resolution.external()
            candidates = self._path_candidates(spec, from_identity, family)

        if candidates is None:
            return Resolution.unresolved(f"'{specifier}' escapes the project root")
        for candidate in candidates:
            if candidate in known_identities:
                return Resolution.resolved(candidate)
        logger.debug("Unresolved import '%s' from %s", specifier, from_identity)
        return Resolution.unresolved(f"no indexed file matches '{specifier}'")

    # ------------------------------------------------------------------

    @staticmethod
    def _is_relative(spec: str, family: str) -> bool:
        if spec in (".", "..") or spec.startswith(("./", "../")):
            return True
        if family not in ("style", "markup"):
            return False
        # url("x.css") / @import "x" are relative to the stylesheet
        # unless they carry a scheme, a root slash or a package prefix.
        return not (
            spec.startswith(("/", "~", "#", "data:"))
            or ":" in spec
        )

    @staticmethod
    def _path_candidates(spec: str, from_identity: str, family: str) -> Optional[List[str]]:
        target = _join_dir(posixpath.dirname(from_identity), spec)
        if target is None:
            return None

        if family == "script":
            suffixes = _SCRIPT_SUFFIXES
        elif family == "style":
            suffixes = _STYLE_SUFFIXES
        else:
            suffixes = _EXACT_ONLY

        candidates: List[str] = []
        for suffix in suffixes:
            if target:
                candidates.append(target + suffix)
            elif suffix.startswith("/"):
                candidates.append(suffix[1:])
        if family == "style" and target:
            head, tail = posixpath.split(target)
            if not tail.startswith("_"):
                partial = posixpath.join(head, f"_{tail}")
                candidates.extend(partial + suffix for suffix in _STYLE_SUFFIXES)
        return candidates

    @staticmethod
    def _python_candidates(spec: str, from_identity: str) -> Optional[List[str]]:
        level = len(spec) - len(spec.lstrip("."))
        module_path = spec[level:].replace(".", "/")
        package = _join_dir(posixpath.dirname(from_identity), "/".join([".."] * (level - 1)) or ".")
        if package is None:
            return None

        if module_path:
            target = posixpath.join(package, module_path) if package else module_path
            return [target + suffix for suffix in _PYTHON_SUFFIXES]
        # ``from . import *``: the package itself
        return [posixpath.join(package, "__init__.py") if package else "__init__.py"]


def _join_dir(base: str, rel: str) -> Optional[str]:
    """Join *rel* onto directory *base*; ``""`` is the root, ``None`` means escaped."""
    joined = posixpath.normpath(posixpath.join(base, rel))
    if joined == ".":
        return ""
    return normalize_identity(joined)
