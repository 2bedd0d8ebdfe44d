"""Archive source definitions."""
from __future__ import annotations

import os
import urllib.parse
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from common.errors import ConfigError


@dataclass(frozen=True)
class ArchiveSource:
    """A named archive: an http(s) base URL or an absolute local directory."""

    name: str
    location: str
    priority: int = 0

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigError("Archive name must not be empty")
        if not (self.is_remote or os.path.isabs(self.location)):
            raise ConfigError(
                f"Archive '{self.name}' location must be an http(s) URL or an absolute path: {self.location}"
            )

    @property
    def is_remote(self) -> bool:
        scheme = urllib.parse.urlparse(self.location).scheme
        return scheme in ("http", "https")

    @property
    def local_path(self) -> Path:
        return Path(self.location)

    def url_for(self, file_name: str) -> str:
        """Address of ``file_name`` inside this archive."""
        if self.is_remote:
            base = self.location if self.location.endswith("/") else self.location + "/"
            return urllib.parse.urljoin(base, file_name)
        return str(self.local_path / file_name)


def build_sources(
    entries: Iterable[Tuple[str, str]],
    priorities: Optional[Mapping[str, int]] = None,
) -> List[ArchiveSource]:
    """Build sources from ``(name, location)`` pairs, keeping their order."""
    priorities = priorities or {}
    sources: List[ArchiveSource] = []
    seen = set()
    for name, location in entries:
        if name in seen:
            raise ConfigError(f"Duplicate archive name: {name}")
        seen.add(name)
        sources.append(ArchiveSource(name=name, location=location, priority=int(priorities.get(name, 0))))
    return sources


def archive_ranks(sources: Sequence[ArchiveSource]) -> dict:
    """Map archive name to a sort key; lower keys are preferred.

    Higher priority wins; equal priorities fall back to list order.
    """
    return {src.name: (-src.priority, index) for index, src in enumerate(sources)}
