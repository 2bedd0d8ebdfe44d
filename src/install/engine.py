"""Unpack package artifacts into the managed directory tree."""
from __future__ import annotations

import io
import logging
import posixpath
import shutil
import tarfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Union

from common.errors import DescriptorError, InstallError
from common.logging_utils import extra_context, is_debug_enabled
from constants import Constants
from install.autoloads import generate_autoloads
from install.compile import CompileFailure, Compiler, ReaderCompiler
from packages.description import (
    parse_define_package,
    parse_library_headers,
    read_description_file,
    write_description_file,
)
from packages.descriptor import PackageDescriptor, PackageKind
from packages import sexp
from registry.signature import GoodSignature

logger = logging.getLogger(__name__)

Artifact = Union[bytes, Path]


@dataclass
class InstallResult:
    """An installed descriptor and the non-fatal compile failures."""

    descriptor: PackageDescriptor
    compile_errors: List[CompileFailure] = field(default_factory=list)


def _within(path: Path, root: Path) -> bool:
    return path == root or root in path.parents


class InstallEngine:
    """Writes packages below ``package_dir`` as ``<name>-<version>/``."""

    def __init__(self, package_dir: Path, compiler: Optional[Compiler] = None):
        self.package_dir = Path(package_dir).expanduser()
        self.compiler: Compiler = compiler or ReaderCompiler()

    def target_dir(self, desc: PackageDescriptor) -> Path:
        return self.package_dir / desc.dirname

    def unpack(
        self,
        desc: PackageDescriptor,
        artifact: Artifact,
        signatures: Iterable[GoodSignature] = (),
    ) -> InstallResult:
        """Install ``artifact`` for ``desc`` and return the installed descriptor.

        Raises:
            InstallError: Corrupt or unsafe archive layout, or a write failure.
        """
        target = self.target_dir(desc)
        if self.package_dir.resolve() not in target.resolve().parents:
            raise InstallError(desc.name, "install directory escapes the package directory", path=target)
        try:
            if desc.kind is PackageKind.SINGLE:
                self._unpack_single(desc, _as_bytes(desc, artifact), target)
            elif desc.kind is PackageKind.TAR:
                self._unpack_tar(desc, _as_bytes(desc, artifact), target)
            elif desc.kind is PackageKind.DIR:
                self._unpack_dir(desc, _as_path(desc, artifact), target)
            elif desc.kind is PackageKind.BUILTIN:
                raise InstallError(desc.name, "built-in packages cannot be installed")
            else:
                raise InstallError(desc.name, f"unknown package kind {desc.kind!r}")
        except OSError as exc:
            raise InstallError(desc.name, f"write failure: {exc}", path=target) from exc

        good = list(signatures)
        installed = desc.with_install_dir(target, signed=bool(good))
        try:
            generate_autoloads(desc.name, target)
            write_description_file(installed, target)
            if good:
                marker = target / f"{desc.full_name}{Constants.SIGNED_MARKER_SUFFIX}"
                marker.write_text("\n".join(sig.kid for sig in good) + "\n", encoding="utf-8")
        except OSError as exc:
            raise InstallError(desc.name, f"cannot write package metadata: {exc}", path=target) from exc

        failures = self.compiler.compile_directory(target)
        for failure in failures:
            logger.warning("Compile failure in %s: %s", desc.full_name, failure)
        if is_debug_enabled(logger):
            logger.debug(
                "Package unpacked",
                extra=extra_context(
                    event="unpack",
                    component="install",
                    target=str(target),
                    kind=desc.kind.value,
                    outcome="success" if not failures else "compile_failures",
                ),
            )
        logger.info("Package %s installed in %s", desc.full_name, target)
        return InstallResult(descriptor=installed, compile_errors=failures)

    def _unpack_single(self, desc: PackageDescriptor, data: bytes, target: Path) -> None:
        target.mkdir(parents=True, exist_ok=True)
        (target / f"{desc.name}{Constants.SOURCE_SUFFIX}").write_bytes(data)

    def _unpack_tar(self, desc: PackageDescriptor, data: bytes, target: Path) -> None:
        try:
            archive = tarfile.open(fileobj=io.BytesIO(data), mode="r:*")
        except tarfile.TarError as exc:
            raise InstallError(desc.name, f"corrupt archive: {exc}") from exc
        with archive:
            members = archive.getmembers()
            files = self._validate_members(desc, members, target)
            target.mkdir(parents=True, exist_ok=True)
            for member, dest in files:
                if member.isdir():
                    dest.mkdir(parents=True, exist_ok=True)
                    continue
                handle = archive.extractfile(member)
                if handle is None:
                    raise InstallError(desc.name, f"cannot read archive member {member.name}")
                dest.parent.mkdir(parents=True, exist_ok=True)
                with handle:
                    dest.write_bytes(handle.read())

    def _validate_members(self, desc: PackageDescriptor, members: List[tarfile.TarInfo], target: Path):
        """Check every member before anything is written."""
        root = target.resolve()
        out = []
        for member in members:
            name = member.name
            if name.startswith("./"):
                name = name[2:]
            if not name or posixpath.isabs(name) or "\\" in name:
                raise InstallError(desc.name, f"illegal path in archive: {member.name!r}")
            first = name.split("/", 1)[0]
            if first != desc.dirname:
                raise InstallError(
                    desc.name, f"archive entry {member.name!r} is outside {desc.dirname}/"
                )
            if not (member.isfile() or member.isdir()):
                raise InstallError(desc.name, f"unsupported archive member type: {member.name!r}")
            dest = (self.package_dir / name).resolve()
            if not _within(dest, root):
                raise InstallError(desc.name, f"archive entry {member.name!r} escapes {desc.dirname}/", path=dest)
            out.append((member, dest))
        if not out:
            raise InstallError(desc.name, "empty archive")
        return out

    def _unpack_dir(self, desc: PackageDescriptor, source: Path, target: Path) -> None:
        if not source.is_dir():
            raise InstallError(desc.name, f"not a directory: {source}", path=source)
        target.mkdir(parents=True, exist_ok=True)
        if source.resolve() == target.resolve():
            return
        copied = 0
        for path in sorted(source.rglob(f"*{Constants.SOURCE_SUFFIX}")):
            if not path.is_file():
                continue
            dest = target / path.relative_to(source)
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, dest)
            copied += 1
        if not copied:
            raise InstallError(desc.name, f"no source files in {source}", path=source)

    def remove(self, desc: PackageDescriptor) -> None:
        """Delete an installed package directory.

        Raises:
            InstallError: The directory is not under the user package directory.
        """
        if desc.install_dir is None:
            raise InstallError(desc.name, "package is not installed")
        path = Path(desc.install_dir)
        if not _within(path.resolve(), self.package_dir.resolve()) or path.resolve() == self.package_dir.resolve():
            raise InstallError(desc.name, f"{path} is a system package directory, not deleting", path=path)
        try:
            shutil.rmtree(path)
        except OSError as exc:
            raise InstallError(desc.name, f"cannot delete {path}: {exc}", path=path) from exc
        logger.info("Package %s deleted", desc.full_name)


def _as_bytes(desc: PackageDescriptor, artifact: Artifact) -> bytes:
    if isinstance(artifact, Path):
        try:
            return artifact.read_bytes()
        except OSError as exc:
            raise InstallError(desc.name, f"cannot read {artifact}: {exc}", path=artifact) from exc
    return artifact


def _as_path(desc: PackageDescriptor, artifact: Artifact) -> Path:
    if not isinstance(artifact, Path):
        raise InstallError(desc.name, "directory packages are installed from a local path")
    return artifact


def descriptor_from_file(path: Path) -> PackageDescriptor:
    """Derive a descriptor for a local ``.el`` file, ``.tar`` bundle or directory.

    Raises:
        InstallError: No descriptor can be derived.
    """
    path = Path(path).expanduser()
    label = path.name
    try:
        if path.is_dir():
            return _descriptor_from_dir(path)
        if path.suffix == Constants.BUNDLE_SUFFIX:
            return _descriptor_from_tar(path)
        if path.suffix == Constants.SOURCE_SUFFIX:
            return parse_library_headers(path.read_text(encoding="utf-8"), file_name=path.name)
    except (DescriptorError, OSError, UnicodeDecodeError) as exc:
        raise InstallError(label, str(exc), path=path) from exc
    raise InstallError(label, "unsupported file type; expected .el, .tar or a directory", path=path)


def _descriptor_from_dir(path: Path) -> PackageDescriptor:
    desc_files = sorted(path.glob(f"*{Constants.DESCRIPTION_SUFFIX}"))
    if desc_files:
        desc = read_description_file(desc_files[0])
        return PackageDescriptor(
            name=desc.name,
            version=desc.version,
            summary=desc.summary,
            requirements=desc.requirements,
            kind=PackageKind.DIR,
            extras=desc.extras,
        )
    base = path.name.split("-")[0] if "-" in path.name else path.name
    main = path / f"{base}{Constants.SOURCE_SUFFIX}"
    candidates = [main] if main.is_file() else sorted(path.glob(f"*{Constants.SOURCE_SUFFIX}"))
    last_error: Optional[Exception] = None
    for candidate in candidates:
        try:
            desc = parse_library_headers(candidate.read_text(encoding="utf-8"), file_name=candidate.name)
        except DescriptorError as exc:
            last_error = exc
            continue
        return PackageDescriptor(
            name=desc.name,
            version=desc.version,
            summary=desc.summary,
            requirements=desc.requirements,
            kind=PackageKind.DIR,
            extras=desc.extras,
        )
    raise DescriptorError(f"No package description found in {path}: {last_error}")


def _descriptor_from_tar(path: Path) -> PackageDescriptor:
    try:
        with tarfile.open(path, mode="r:*") as archive:
            for member in archive.getmembers():
                parts = member.name.lstrip("./").split("/")
                if len(parts) == 2 and parts[1].endswith(Constants.DESCRIPTION_SUFFIX) and member.isfile():
                    handle = archive.extractfile(member)
                    if handle is None:
                        continue
                    with handle:
                        text = handle.read().decode("utf-8")
                    for form in sexp.read_all(text):
                        if isinstance(form, list) and form and form[0] == "define-package":
                            desc = parse_define_package(form)
                            return PackageDescriptor(
                                name=desc.name,
                                version=desc.version,
                                summary=desc.summary,
                                requirements=desc.requirements,
                                kind=PackageKind.TAR,
                                extras=desc.extras,
                            )
    except tarfile.TarError as exc:
        raise DescriptorError(f"Corrupt archive {path}: {exc}") from exc
    raise DescriptorError(f"No description file in {path}")
