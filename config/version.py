"""Project-level versioning and compatibility metadata."""

from __future__ import annotations

from pathlib import Path
from typing import Final, NamedTuple, Tuple

MIN_PYTHON_VERSION: Final[Tuple[int, int]] = (3, 11)
MIN_PYTHON_VERSION_STR: Final[str] = ".".join(str(part) for part in MIN_PYTHON_VERSION)
PYTHON_REQUIRES_SPECIFIER: Final[str] = f">={MIN_PYTHON_VERSION_STR}"

# Version of the read API payload shape, independent of the package version.
API_VERSION: Final[str] = "1.0"


class VersionInfo(NamedTuple):
    """Semantic version components."""

    major: int
    minor: int
    patch: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


def _parse_version(raw: str) -> VersionInfo:
    parts = raw.strip().split(".")
    if len(parts) != 3 or not all(part.isdigit() for part in parts):
        raise ValueError(f"VERSION must look like MAJOR.MINOR.PATCH, got {raw!r}")
    return VersionInfo(*(int(part) for part in parts))


_VERSION_FILE = Path(__file__).resolve().parent.parent / "VERSION"
PROJECT_VERSION: Final[str] = _VERSION_FILE.read_text(encoding="utf-8").strip()
VERSION_INFO: Final[VersionInfo] = _parse_version(PROJECT_VERSION)
__version__: Final[str] = PROJECT_VERSION

__all__ = [
    "API_VERSION",
    "MIN_PYTHON_VERSION",
    "MIN_PYTHON_VERSION_STR",
    "PYTHON_REQUIRES_SPECIFIER",
    "PROJECT_VERSION",
    "VERSION_INFO",
    "VersionInfo",
    "__version__",
]
