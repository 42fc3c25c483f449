from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath


def _normalize_pattern(pattern: str) -> str:
    normalized = pattern.strip().replace("\\", "/")
    if normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized.lstrip("/")


def _normalize_key(key: str) -> str:
    # Remote keys carry a leading separator, relative paths do not.
    return key.replace("\\", "/").lstrip("/")


def _match_pattern(relative: str, pattern: str) -> bool:
    if not pattern:
        return False
    if pattern.endswith("/"):
        return relative.startswith(pattern)
    path_obj = PurePosixPath(relative)
    return path_obj.match(pattern) or path_obj.match(f"**/{pattern}")


@dataclass(slots=True, frozen=True)
class PathFilter:
    """Include/exclude globs applied to relative paths and remote keys alike."""

    include_patterns: tuple[str, ...] = ()
    exclude_patterns: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.include_patterns and not self.exclude_patterns

    def matches(self, key: str) -> bool:
        relative = _normalize_key(key)
        if self.include_patterns and not any(
            _match_pattern(relative, pattern) for pattern in self.include_patterns
        ):
            return False
        return not any(_match_pattern(relative, pattern) for pattern in self.exclude_patterns)


def build_path_filter(
    include_patterns: list[str] | tuple[str, ...] | None = None,
    exclude_patterns: list[str] | tuple[str, ...] | None = None,
) -> PathFilter:
    include = tuple(p for p in map(_normalize_pattern, include_patterns or ()) if p)
    exclude = tuple(p for p in map(_normalize_pattern, exclude_patterns or ()) if p)
    return PathFilter(include_patterns=include, exclude_patterns=exclude)
