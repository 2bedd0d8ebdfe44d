"""In-memory package indexes.

``DescriptorStore`` is constructed explicitly and passed to every component;
nothing here is module-level state.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from common.errors import DescriptorError
from common.logging_utils import extra_context, is_debug_enabled
from constants import Constants
from packages.description import read_description_file
from packages.descriptor import PackageDescriptor, PackageKind, sort_by_version
from registry.sources import ArchiveSource, archive_ranks
from versioning.vector import VersionVector

logger = logging.getLogger(__name__)

Index = Dict[str, List[PackageDescriptor]]

_LAST_RANK = (0, 1 << 30)


class DescriptorStore:
    """Installed, built-in and available package indexes.

    Every index maps a name to a non-empty list of descriptors sorted by
    decreasing version. ``available`` is sorted by archive preference first.
    """

    def __init__(
        self,
        *,
        host_name: str = Constants.HOST_NAME,
        host_version: str = Constants.HOST_VERSION,
        archives: Sequence[ArchiveSource] = (),
        pinned: Optional[Mapping[str, str]] = None,
    ):
        self.host_name = host_name
        self.host_version = VersionVector.coerce(host_version)
        self.installed: Index = {}
        self.builtin: Index = {}
        self.available: Index = {}
        self.selected: List[str] = []
        self._archives: List[ArchiveSource] = list(archives)
        self._ranks = archive_ranks(self._archives)
        self._pinned: Dict[str, str] = dict(pinned or {})
        self._indexes: Dict[str, List[PackageDescriptor]] = {}
        self._compat: Optional[Dict[str, VersionVector]] = None
        self._compat_deep: Optional[Dict[str, Optional[VersionVector]]] = None
        self.set_builtins({})

    # ------------------------------------------------------------------
    # built-ins
    def set_builtins(self, versions: Mapping[str, str]) -> None:
        """Replace the built-in index; the host itself is always built in."""
        index: Index = {
            self.host_name: [
                PackageDescriptor(
                    name=self.host_name,
                    version=self.host_version,
                    summary="Host runtime",
                    kind=PackageKind.BUILTIN,
                )
            ]
        }
        for name, version in versions.items():
            index[name] = [
                PackageDescriptor(
                    name=name,
                    version=VersionVector.coerce(version),
                    kind=PackageKind.BUILTIN,
                )
            ]
        self.builtin = index
        self.invalidate_compatibility()

    def builtin_p(self, name: str, min_version: Optional[VersionVector] = None) -> bool:
        entries = self.builtin.get(name)
        if not entries:
            return False
        return min_version is None or entries[0].version >= min_version

    # ------------------------------------------------------------------
    # installed
    def load_installed(self, directories: Sequence[Path]) -> int:
        """Rebuild ``installed`` from package directories.

        The first directory is the user directory; later ones are read-only
        system directories. Unparsable package directories are skipped.
        """
        installed: Index = {}
        count = 0
        for root in directories:
            root = Path(root).expanduser()
            if not root.is_dir():
                continue
            for pkg_dir in sorted(p for p in root.iterdir() if p.is_dir()):
                desc = load_installed_descriptor(pkg_dir)
                if desc is None:
                    continue
                entries = installed.setdefault(desc.name, [])
                if any(e.version == desc.version for e in entries):
                    # The user directory shadows system directories.
                    continue
                entries.append(desc)
                count += 1
        self.installed = {name: sort_by_version(descs) for name, descs in installed.items()}
        self.invalidate_compatibility()
        logger.info("Loaded %d installed package(s)", count)
        return count

    def add_installed(self, desc: PackageDescriptor) -> None:
        entries = [e for e in self.installed.get(desc.name, []) if e.version != desc.version]
        entries.append(desc)
        self.installed[desc.name] = sort_by_version(entries)
        self.invalidate_compatibility()

    def remove_installed(self, desc: PackageDescriptor) -> None:
        entries = [e for e in self.installed.get(desc.name, []) if e.version != desc.version]
        if entries:
            self.installed[desc.name] = entries
        else:
            self.installed.pop(desc.name, None)
        self.invalidate_compatibility()

    def get_installed(self, name: str) -> List[PackageDescriptor]:
        return list(self.installed.get(name, []))

    def best_installed(
        self, name: str, min_version: Optional[VersionVector] = None
    ) -> Optional[PackageDescriptor]:
        for desc in self.installed.get(name, []):
            if min_version is None or desc.version >= min_version:
                return desc
        return None

    def installed_p(self, name: str, min_version: Optional[VersionVector] = None) -> bool:
        """True when ``name`` is installed or built in at ``min_version`` or newer."""
        if self.builtin_p(name, min_version):
            return True
        return self.best_installed(name, min_version) is not None

    # ------------------------------------------------------------------
    # available
    @property
    def archives(self) -> List[ArchiveSource]:
        return list(self._archives)

    def archive_indexes(self) -> Dict[str, List[PackageDescriptor]]:
        return {name: list(descs) for name, descs in self._indexes.items()}

    def replace_available(self, indexes: Mapping[str, Iterable[PackageDescriptor]]) -> None:
        """Swap in new per-archive indexes as one unit."""
        frozen = {archive: list(descs) for archive, descs in indexes.items()}
        merged: Index = {}
        for archive, descs in frozen.items():
            for desc in descs:
                pin = self._pinned.get(desc.name)
                if pin is not None and pin != archive:
                    continue
                merged.setdefault(desc.name, []).append(desc)
        for name, descs in merged.items():
            descs.sort(key=self._candidate_key)
        self._indexes = frozen
        self.available = merged
        self.invalidate_compatibility()
        if is_debug_enabled(logger):
            logger.debug(
                "Available index replaced",
                extra=extra_context(
                    event="index_replace",
                    component="store",
                    archives=len(frozen),
                    count=len(merged),
                ),
            )

    def _candidate_key(self, desc: PackageDescriptor) -> Tuple:
        rank = self._ranks.get(desc.archive or "", _LAST_RANK)
        return (rank, _DescendingVersion(desc.version))

    def available_for(self, name: str) -> List[PackageDescriptor]:
        return list(self.available.get(name, []))

    def find_available(self, name: str, version: Optional[VersionVector] = None) -> Optional[PackageDescriptor]:
        for desc in self.available.get(name, []):
            if version is None or desc.version == version:
                return desc
        return None

    # ------------------------------------------------------------------
    # compatibility
    def invalidate_compatibility(self) -> None:
        self._compat = None
        self._compat_deep = None

    def _host_incompatible(self, desc: PackageDescriptor) -> bool:
        req = desc.host_requirement(self.host_name)
        return req is not None and self.host_version < req.min_version

    def _all_descriptors(self) -> Iterable[PackageDescriptor]:
        for index in (self.builtin, self.installed, self.available):
            for descs in index.values():
                yield from descs

    def _compat_table(self) -> Dict[str, VersionVector]:
        if self._compat is None:
            table: Dict[str, VersionVector] = {}
            for desc in self._all_descriptors():
                if self._host_incompatible(desc):
                    continue
                current = table.get(desc.name)
                if current is None or current < desc.version:
                    table[desc.name] = desc.version
            self._compat = table
        return self._compat

    def incompatible_requirements(self, desc: PackageDescriptor) -> List:
        """Requirements of ``desc`` no compatible package can satisfy."""
        table = self._compat_table()
        missing = []
        for req in desc.requirements:
            if req.name == self.host_name:
                if self.host_version < req.min_version:
                    missing.append(req)
                continue
            best = table.get(req.name)
            if best is None or best < req.min_version:
                missing.append(req)
        return missing

    def compatible_version(self, name: str, deep: bool = False) -> Optional[VersionVector]:
        """Highest compatible version of ``name``, or None.

        Shallow mode checks only the host requirement; deep mode also
        requires every transitive dependency to be compatible.
        """
        if not deep:
            return self._compat_table().get(name)
        if self._compat_deep is None:
            self._compat_deep = {}
        return self._deep_compatible(name, set())

    def _deep_compatible(self, name: str, visiting: Set[str]) -> Optional[VersionVector]:
        if name in self._compat_deep:
            return self._compat_deep[name]
        if name in visiting:
            # Cycles do not make a package incompatible on their own.
            return self._compat_table().get(name)
        visiting.add(name)
        best: Optional[VersionVector] = None
        candidates = sorted(
            (d for d in self._all_descriptors() if d.name == name),
            key=lambda d: d.version,
            reverse=True,
        )
        for desc in candidates:
            if self._host_incompatible(desc):
                continue
            ok = True
            for req in desc.requirements:
                if req.name == self.host_name:
                    continue
                dep_version = self._deep_compatible(req.name, visiting)
                if dep_version is None or dep_version < req.min_version:
                    ok = False
                    break
            if ok:
                best = desc.version
                break
        visiting.discard(name)
        self._compat_deep[name] = best
        return best

    # ------------------------------------------------------------------
    # dependency queries
    def reverse_dependencies(self, name: str) -> List[PackageDescriptor]:
        """Installed descriptors that require ``name``."""
        out = []
        for descs in self.installed.values():
            for desc in descs:
                if desc.requirement_for(name) is not None:
                    out.append(desc)
        return out

    def used_elsewhere(self, desc: PackageDescriptor, ignored: Iterable[str] = ()) -> List[PackageDescriptor]:
        """Installed packages other than ``desc`` (and ``ignored``) that need it."""
        skip = set(ignored) | {desc.name}
        return [d for d in self.reverse_dependencies(desc.name) if d.name not in skip]

    def dependency_closure(self, names: Iterable[str]) -> List[str]:
        """Names reachable from ``names`` through installed requirements."""
        out: List[str] = []
        stack = list(names)
        seen: Set[str] = set()
        while stack:
            name = stack.pop(0)
            if name in seen:
                continue
            seen.add(name)
            out.append(name)
            desc = self.best_installed(name)
            if desc is None:
                continue
            stack.extend(r.name for r in desc.requirements if r.name not in seen)
        return out

    def removable_packages(self) -> List[str]:
        """Installed names not needed by any selected package."""
        roots = [name for name in self.selected if name in self.installed]
        needed = set(self.dependency_closure(roots))
        return [name for name in self.installed if name not in needed]

    def upgradeable_packages(self) -> List[Tuple[PackageDescriptor, PackageDescriptor]]:
        """Pairs of (installed, newer available) for non-built-in packages."""
        out = []
        for name, descs in self.installed.items():
            if name in self.builtin:
                continue
            candidates = self.available.get(name)
            if not candidates:
                continue
            if descs[0].version < candidates[0].version:
                out.append((descs[0], candidates[0]))
        return out

    # ------------------------------------------------------------------
    # selection
    def select(self, name: str) -> bool:
        if name in self.selected:
            return False
        self.selected.append(name)
        return True

    def deselect(self, name: str) -> bool:
        if name not in self.selected:
            return False
        self.selected.remove(name)
        return True

    def seed_selection(self) -> List[str]:
        """Select installed packages no other installed package requires.

        Only applies while nothing is selected; returns the names added.
        """
        if self.selected:
            return []
        leaves = [
            name for name in sorted(self.installed)
            if not any(d.name != name for d in self.reverse_dependencies(name))
        ]
        self.selected.extend(leaves)
        return leaves

    def snapshot(self) -> Tuple:
        """A comparable copy of every index, for change detection."""

        def freeze(index: Index) -> Tuple:
            return tuple(
                sorted(
                    (name, tuple((d.key, d.archive, d.install_dir, d.signed) for d in descs))
                    for name, descs in index.items()
                )
            )

        return (
            freeze(self.installed),
            freeze(self.builtin),
            freeze(self.available),
            tuple(self.selected),
        )


class _DescendingVersion:
    """Sort helper that reverses version order."""

    __slots__ = ("version",)

    def __init__(self, version: VersionVector):
        self.version = version

    def __lt__(self, other: "_DescendingVersion") -> bool:
        return other.version < self.version

    def __eq__(self, other: object) -> bool:
        return isinstance(other, _DescendingVersion) and other.version == self.version


def load_installed_descriptor(pkg_dir: Path) -> Optional[PackageDescriptor]:
    """Read the descriptor of one installed package directory, or None."""
    desc_files = sorted(pkg_dir.glob(f"*{Constants.DESCRIPTION_SUFFIX}"))
    if not desc_files:
        return None
    try:
        desc = read_description_file(desc_files[0])
    except DescriptorError as exc:
        logger.warning("Skipping package directory %s: %s", pkg_dir, exc)
        return None
    signed = (pkg_dir / f"{desc.full_name}{Constants.SIGNED_MARKER_SUFFIX}").is_file()
    return desc.with_install_dir(pkg_dir, signed=signed)
