"""Package descriptor value types."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Tuple

from common.errors import DescriptorError
from versioning.vector import VersionVector


class PackageKind(Enum):
    """Closed set of package layouts."""

    SINGLE = "single"
    TAR = "tar"
    DIR = "dir"
    BUILTIN = "builtin"

    @classmethod
    def parse(cls, value: Any) -> "PackageKind":
        """Accept a kind, its name or its value; reject anything else."""
        if isinstance(value, PackageKind):
            return value
        text = str(value).strip().lower() if value is not None else ""
        for kind in cls:
            if text in (kind.value, kind.name.lower()):
                return kind
        raise DescriptorError(f"Unknown package kind: {value!r}")

    @property
    def artifact_suffix(self) -> str:
        if self is PackageKind.SINGLE:
            return ".el"
        if self is PackageKind.TAR:
            return ".tar"
        raise DescriptorError(f"Packages of kind '{self.value}' have no downloadable artifact")


def valid_package_name(name: Any) -> bool:
    """Names become directory names, so they must stay a single path component."""
    if not isinstance(name, str) or not name or name.startswith("."):
        return False
    return not any(ch in name for ch in "/\\\0") and ".." not in name


@dataclass(frozen=True)
class Requirement:
    """A dependency on ``name`` at ``min_version`` or newer."""

    name: str
    min_version: VersionVector

    @classmethod
    def of(cls, name: str, version: Any = None) -> "Requirement":
        return cls(name=str(name), min_version=VersionVector.coerce(version))

    def satisfied_by(self, version: VersionVector) -> bool:
        return version >= self.min_version

    def __str__(self) -> str:
        return f"{self.name}-{self.min_version}"


@dataclass(frozen=True)
class PackageDescriptor:
    """Immutable description of one version of one package.

    ``(name, version)`` identifies a descriptor within a collection.
    ``extras`` holds open metadata (keywords, url, maintainer, ...) and does
    not take part in equality.
    """

    name: str
    version: VersionVector
    summary: str = ""
    requirements: Tuple[Requirement, ...] = ()
    kind: PackageKind = PackageKind.SINGLE
    archive: Optional[str] = None
    install_dir: Optional[Path] = None
    signed: bool = False
    extras: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        if not valid_package_name(self.name):
            raise DescriptorError(f"Invalid package name: {self.name!r}")
        if not isinstance(self.version, VersionVector):
            object.__setattr__(self, "version", VersionVector.coerce(self.version))
        object.__setattr__(self, "kind", PackageKind.parse(self.kind))
        object.__setattr__(self, "requirements", tuple(self.requirements))
        for req in self.requirements:
            if not isinstance(req, Requirement):
                raise DescriptorError(f"Invalid requirement {req!r} in package '{self.name}'")
        if self.install_dir is not None and not isinstance(self.install_dir, Path):
            object.__setattr__(self, "install_dir", Path(self.install_dir))

    @classmethod
    def create(
        cls,
        name: str,
        version: Any,
        *,
        summary: str = "",
        requirements: Iterable[Tuple[str, Any]] = (),
        kind: Any = PackageKind.SINGLE,
        **kwargs: Any,
    ) -> "PackageDescriptor":
        """Build a descriptor from plain values (version strings, tuples)."""
        reqs = tuple(
            r if isinstance(r, Requirement) else Requirement.of(r[0], r[1])
            for r in requirements
        )
        return cls(
            name=name,
            version=VersionVector.coerce(version),
            summary=summary,
            requirements=reqs,
            kind=PackageKind.parse(kind),
            **kwargs,
        )

    @property
    def key(self) -> Tuple[str, VersionVector]:
        return (self.name, self.version)

    @property
    def full_name(self) -> str:
        return f"{self.name}-{self.version}"

    @property
    def dirname(self) -> str:
        """Name of the install directory, ``<name>-<version>``."""
        return self.full_name

    @property
    def is_builtin(self) -> bool:
        return self.kind is PackageKind.BUILTIN

    def artifact_name(self) -> str:
        return f"{self.full_name}{self.kind.artifact_suffix}"

    def requirement_for(self, name: str) -> Optional[Requirement]:
        for req in self.requirements:
            if req.name == name:
                return req
        return None

    def host_requirement(self, host_name: str) -> Optional[Requirement]:
        """The minimum host version this package declares, if any."""
        return self.requirement_for(host_name)

    def with_install_dir(self, path: Path, *, signed: Optional[bool] = None) -> "PackageDescriptor":
        changes: dict = {"install_dir": Path(path)}
        if signed is not None:
            changes["signed"] = signed
        return replace(self, **changes)

    def __str__(self) -> str:
        return self.full_name


def sort_by_version(descriptors: Iterable[PackageDescriptor]) -> list:
    """Return descriptors sorted by decreasing version (stable)."""
    return sorted(descriptors, key=lambda d: d.version, reverse=True)
