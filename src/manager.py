"""Top-level package operations.

``PackageManager`` owns one ``DescriptorStore`` and wires the archive
client, resolver, install engine and activation engine together:

- ``initialize``: load built-ins, cached indexes and installed packages, then
  activate the best installed version of each package
- ``refresh``: replace the available index from the archives
- ``install`` / ``install_file``: resolve, download, unpack and activate
- ``delete`` / ``upgrade`` / ``upgrade_all`` / ``autoremove``
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from activation.engine import ActivationEngine, ActivationReport
from activation.host import ExtensionHost
from common.errors import (
    ActivationError,
    ElpmError,
    FetchError,
    InstallError,
    PackageInUseError,
    SignatureError,
    UnsatisfiableError,
)
from common.logging_utils import extra_context, is_debug_enabled, Timer
from config import SelectionStore, Settings
from install.compile import CompileFailure, Compiler
from install.engine import InstallEngine, descriptor_from_file
from packages.descriptor import PackageDescriptor, PackageKind, Requirement
from packages.store import DescriptorStore
from registry.client import ArchiveClient, RefreshResult
from registry.signature import Keyring, SignatureChecker
from registry.sources import ArchiveSource, build_sources
from resolution.policy import HoldPolicy
from resolution.transaction import Transaction, TransactionResolver, sort_for_removal

logger = logging.getLogger(__name__)

PackageRef = Union[str, PackageDescriptor]


@dataclass
class InstallReport:
    """Per-package outcome of an install batch."""

    installed: List[PackageDescriptor] = field(default_factory=list)
    already_installed: List[str] = field(default_factory=list)
    failures: Dict[str, ElpmError] = field(default_factory=dict)
    activation_failures: Dict[str, ActivationError] = field(default_factory=dict)
    compile_errors: Dict[str, List[CompileFailure]] = field(default_factory=dict)
    cycles: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures and not self.activation_failures

    def installed_names(self) -> List[str]:
        return [d.name for d in self.installed]


class PackageManager:
    """Facade over the package management components."""

    def __init__(
        self,
        settings: Settings,
        *,
        client: Optional[ArchiveClient] = None,
        host: Optional[ExtensionHost] = None,
        compiler: Optional[Compiler] = None,
    ):
        self.settings = settings
        self.sources: List[ArchiveSource] = build_sources(settings.archives, settings.archive_priorities)
        self.store = DescriptorStore(
            host_name=settings.host_name,
            host_version=settings.host_version,
            archives=self.sources,
            pinned=settings.pinned,
        )
        self.policy = HoldPolicy.from_config(settings.hold)
        if client is None:
            checker = SignatureChecker(settings.signature_policy, Keyring.load(settings.keyring))
            client = ArchiveClient(
                settings.cache_dir, checker, unsigned_archives=settings.unsigned_archives
            )
        self.client = client
        self.resolver = TransactionResolver(self.store, self.policy)
        self.installer = InstallEngine(settings.package_dir, compiler)
        self.activator = ActivationEngine(self.store, host, self.policy)
        self.selection = SelectionStore(settings.state_file)

    @property
    def host(self) -> ExtensionHost:
        return self.activator.host

    def _ensure_idle(self) -> None:
        self.client.tracker.ensure_idle(src.name for src in self.sources)

    def _source(self, name: Optional[str]) -> ArchiveSource:
        for src in self.sources:
            if src.name == name:
                return src
        raise FetchError(f"Unknown archive '{name}'", archive=name)

    def _save_selection(self) -> None:
        self.selection.save(self.store.selected)

    # ------------------------------------------------------------------
    def initialize(self, activate: bool = True) -> Optional[ActivationReport]:
        """Load every index from disk and activate installed packages."""
        self.store.set_builtins(self.settings.builtin_packages)
        self.store.replace_available(self.client.load_cached_indexes(self.sources))
        self.store.load_installed(self.settings.package_directories)
        self.store.selected = self.selection.load()
        if not activate:
            return None
        descs = []
        for name in sorted(self.store.installed):
            best = self.activator.best_allowed(name)
            if best is None:
                logger.info("Not activating %s: no installed version is allowed", name)
                continue
            descs.append(best)
        report = self.activator.activate_all(descs)
        logger.info("Activated %d package(s)", len(report.activated))
        return report

    def refresh(self) -> RefreshResult:
        """Fetch every archive index and replace the available index.

        Archives that fail keep their previously cached index.
        """
        self._ensure_idle()
        sources = self.sources
        if self.settings.offline:
            sources = [src for src in self.sources if not src.is_remote]
            logger.warning("Offline mode: skipping %d remote archive(s)", len(self.sources) - len(sources))
        with Timer() as timer:
            result = self.client.refresh(sources)
        indexes = self.store.archive_indexes()
        indexes.update(result.indexes)
        self.store.replace_available(indexes)
        if is_debug_enabled(logger):
            logger.debug(
                "Package list refreshed",
                extra=extra_context(
                    event="refresh",
                    component="manager",
                    outcome="success" if result.ok else "partial",
                    duration_ms=timer.duration_ms(),
                    count=len(result.indexes),
                ),
            )
        return result

    # ------------------------------------------------------------------
    def resolve(self, refs: Sequence[PackageRef]) -> Transaction:
        """Compute the install transaction for ``refs`` without changing anything."""
        return self.resolver.compute_transaction([self._requested(ref) for ref in refs])

    def _requested(self, ref: PackageRef) -> PackageDescriptor:
        if isinstance(ref, PackageDescriptor):
            return ref
        return self.resolver.find_candidate(Requirement.of(ref))

    def install(self, refs: Sequence[PackageRef], select: bool = True) -> InstallReport:
        """Install ``refs`` and their dependencies.

        Raises:
            UnsatisfiableError: Resolution failed; nothing was changed.
            TransactionInProgressError: Another download cycle is running.
        """
        self._ensure_idle()
        report = InstallReport()
        requested: List[PackageDescriptor] = []
        for ref in refs:
            name = ref.name if isinstance(ref, PackageDescriptor) else ref
            if isinstance(ref, str) and self.store.installed_p(name):
                report.already_installed.append(name)
                continue
            if isinstance(ref, PackageDescriptor) and _installed_at(self.store, ref):
                report.already_installed.append(name)
                continue
            requested.append(self._requested(ref))

        if requested:
            transaction = self.resolver.compute_transaction(requested)
            report.cycles = list(transaction.cycles)
            self._run_transaction(transaction, report)

        if select:
            changed = False
            for ref in refs:
                name = ref.name if isinstance(ref, PackageDescriptor) else ref
                if name not in report.failures and self.store.installed_p(name):
                    changed = self.store.select(name) or changed
            if changed:
                self._save_selection()
        return report

    def _run_transaction(
        self,
        transaction: Transaction,
        report: InstallReport,
        local: Optional[Dict[str, Union[bytes, Path]]] = None,
    ) -> None:
        local = local or {}
        for desc in transaction:
            if desc.full_name not in local and _installed_at(self.store, desc):
                report.already_installed.append(desc.name)
                continue
            try:
                if desc.full_name in local:
                    result = self.installer.unpack(desc, local[desc.full_name])
                else:
                    archive = self._source(desc.archive)
                    if self.settings.offline and archive.is_remote:
                        raise FetchError("Offline mode, not downloading", archive=archive.name)
                    artifact = self.client.download(archive, desc)
                    result = self.installer.unpack(desc, artifact.data, artifact.signatures)
            except (FetchError, SignatureError, InstallError) as exc:
                logger.error("Error installing %s: %s", desc.full_name, exc)
                report.failures[desc.name] = exc
                continue
            installed = result.descriptor
            self.store.add_installed(installed)
            report.installed.append(installed)
            if result.compile_errors:
                report.compile_errors[desc.name] = result.compile_errors
            reload = self.activator.active_version(desc.name) is not None
            try:
                self.activator.activate(installed, reload=reload)
            except ActivationError as exc:
                logger.warning("%s", exc)
                report.activation_failures[desc.name] = exc

    def install_file(self, path: Path, select: bool = True) -> InstallReport:
        """Install a local ``.el`` file, ``.tar`` bundle or directory.

        Dependencies are resolved against the archives as usual.
        """
        self._ensure_idle()
        path = Path(path).expanduser()
        desc = descriptor_from_file(path)
        if desc.kind is PackageKind.DIR:
            artifact: Union[bytes, Path] = path
        else:
            try:
                artifact = path.read_bytes()
            except OSError as exc:
                raise InstallError(desc.name, f"cannot read {path}: {exc}", path=path) from exc
        report = InstallReport()
        transaction = self.resolver.compute_transaction([desc])
        report.cycles = list(transaction.cycles)
        self._run_transaction(transaction, report, local={desc.full_name: artifact})
        if select and desc.name not in report.failures and self.store.select(desc.name):
            self._save_selection()
        return report

    # ------------------------------------------------------------------
    def _installed_desc(self, ref: PackageRef) -> PackageDescriptor:
        if isinstance(ref, PackageDescriptor):
            return ref
        installed = self.store.get_installed(ref)
        if not installed:
            if self.store.builtin_p(ref):
                raise InstallError(ref, "package is built-in, not deleting")
            raise InstallError(ref, "package is not installed")
        return installed[0]

    def delete(self, ref: PackageRef, force: bool = False, save: bool = True) -> PackageDescriptor:
        """Delete an installed package.

        Raises:
            PackageInUseError: Other installed packages require it and ``force`` is off.
            InstallError: The package is built-in, not installed or not deletable.
        """
        desc = self._installed_desc(ref)
        if desc.is_builtin:
            raise InstallError(desc.name, "package is built-in, not deleting")
        if not force:
            dependents = self.store.used_elsewhere(desc)
            if dependents:
                raise PackageInUseError(desc.name, [d.full_name for d in dependents])
        self.installer.remove(desc)
        self.store.remove_installed(desc)
        if not self.store.get_installed(desc.name) and self.store.deselect(desc.name) and save:
            self._save_selection()
        return desc

    def upgrade(self, name: str) -> Optional[InstallReport]:
        """Install the newest allowed version of ``name`` and delete the old one.

        Returns None when ``name`` is already up to date.
        """
        old = self.store.best_installed(name)
        if old is None:
            raise InstallError(name, "package is not installed")
        candidate = self.resolver.find_candidate(Requirement.of(name))
        if candidate.version <= old.version:
            logger.info("%s is up to date", old.full_name)
            return None
        return self._upgrade([(old, candidate)])

    def upgrade_all(self) -> InstallReport:
        """Upgrade every installed package with a newer allowed version."""
        pairs = []
        for old, _ in self.store.upgradeable_packages():
            try:
                candidate = self.resolver.find_candidate(Requirement.of(old.name))
            except UnsatisfiableError as exc:
                logger.info("Not upgrading %s: %s", old.full_name, exc)
                continue
            if old.version < candidate.version:
                pairs.append((old, candidate))
        if not pairs:
            logger.info("All packages are up to date")
            return InstallReport()
        return self._upgrade(pairs)

    def _upgrade(self, pairs) -> InstallReport:
        report = self.install([new for _, new in pairs], select=False)
        upgraded = set(report.installed_names())
        for old, _ in pairs:
            if old.name not in upgraded:
                continue
            try:
                self.delete(old, force=True)
            except InstallError as exc:
                logger.warning("Keeping %s: %s", old.full_name, exc)
        return report

    def autoremove(self) -> List[PackageDescriptor]:
        """Delete installed packages no selected package needs.

        An empty selection is first rebuilt from the installed packages that
        nothing else depends on, so a lost state file never empties the tree.
        """
        seeded = self.store.seed_selection()
        if seeded:
            logger.info("No packages selected; selecting %s", ", ".join(seeded))
            self._save_selection()
        names = set(self.store.removable_packages())
        if not names:
            logger.info("Nothing to autoremove")
            return []
        candidates = [d for name in sorted(names) for d in self.store.get_installed(name)]
        removed = []
        for desc in sort_for_removal(candidates):
            try:
                removed.append(self.delete(desc, force=True, save=False))
            except InstallError as exc:
                logger.warning("Not removing %s: %s", desc.full_name, exc)
        self._save_selection()
        return removed


def _installed_at(store: DescriptorStore, desc: PackageDescriptor) -> bool:
    return any(e.version == desc.version for e in store.get_installed(desc.name))
