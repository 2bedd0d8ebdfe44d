"""Package activation.

Activation wires an installed package into an ``ExtensionHost``: its
dependencies are activated first, its directory joins the load path once and
its autoloads file is evaluated. A package is activated at most once unless a
reload is requested; the ``activated`` record only grows.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from activation.host import ExtensionHost
from common.errors import ActivationError, DescriptorError
from common.logging_utils import extra_context, is_debug_enabled
from constants import Constants
from install.autoloads import autoloads_file_name
from packages.descriptor import PackageDescriptor, PackageKind, Requirement
from packages.store import DescriptorStore
from resolution.policy import HoldPolicy

logger = logging.getLogger(__name__)


class ActivationState(Enum):
    INACTIVE = "inactive"
    ACTIVATING = "activating"
    ACTIVE = "active"


@dataclass
class ActivationReport:
    """Outcome of a batch activation."""

    activated: List[str] = field(default_factory=list)
    failures: Dict[str, ActivationError] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class ActivationEngine:
    """Activates installed packages into ``host`` in dependency order."""

    def __init__(
        self,
        store: DescriptorStore,
        host: Optional[ExtensionHost] = None,
        policy: Optional[HoldPolicy] = None,
    ):
        self.store = store
        self.host = host or ExtensionHost()
        self.policy = policy or HoldPolicy()
        self.activated: List[str] = []
        self._active: Dict[str, PackageDescriptor] = {}
        self._activating: Dict[str, PackageDescriptor] = {}

    def state(self, name: str) -> ActivationState:
        if name in self._activating:
            return ActivationState.ACTIVATING
        if name in self._active:
            return ActivationState.ACTIVE
        return ActivationState.INACTIVE

    def active_version(self, name: str) -> Optional[PackageDescriptor]:
        return self._active.get(name)

    def activate(
        self,
        desc: PackageDescriptor,
        reload: bool = False,
        with_dependencies: bool = True,
    ) -> bool:
        """Activate ``desc``; return True on success.

        Raises:
            ActivationError: A dependency is missing or the package fails to load.
        """
        if desc.kind is PackageKind.BUILTIN:
            return True
        if desc.name in self._activating:
            # Reached again through a dependency cycle.
            return True
        current = self._active.get(desc.name)
        if current is not None and not reload:
            if current.version != desc.version:
                logger.info(
                    "%s already active, not activating %s", current.full_name, desc.full_name
                )
            return True
        if desc.install_dir is None:
            raise ActivationError(desc.name, "package is not installed")

        self._activating[desc.name] = desc
        try:
            if with_dependencies:
                for req in desc.requirements:
                    self._activate_dependency(desc, req)
            self._load(desc, reload)
        finally:
            self._activating.pop(desc.name, None)

        self._active[desc.name] = desc
        self.activated.append(desc.name)
        if is_debug_enabled(logger):
            logger.debug(
                "Package activated",
                extra=extra_context(
                    event="activate",
                    component="activation",
                    outcome="success",
                    target=desc.full_name,
                    reload=reload or None,
                ),
            )
        return True

    def _activate_dependency(self, desc: PackageDescriptor, req: Requirement) -> None:
        if self.store.builtin_p(req.name, req.min_version):
            return
        if req.name in self._activating:
            return
        active = self._active.get(req.name)
        if active is not None:
            if active.version < req.min_version:
                raise ActivationError(
                    desc.name,
                    f"{active.full_name} is already active, but {req} is required",
                    missing_dependency=req.name,
                    required_version=req.min_version,
                )
            return
        dep = self.best_allowed(req.name, req)
        if dep is None:
            raise ActivationError(
                desc.name,
                f"required package {req} is unavailable",
                missing_dependency=req.name,
                required_version=req.min_version,
            )
        self.activate(dep)

    def best_allowed(self, name: str, req: Optional[Requirement] = None) -> Optional[PackageDescriptor]:
        """Highest installed version of ``name`` meeting ``req`` that the policy allows."""
        for candidate in self.store.get_installed(name):
            if req is not None and not req.satisfied_by(candidate.version):
                continue
            if not self.policy.allows(name, candidate.version):
                continue
            return candidate
        return None

    def _load(self, desc: PackageDescriptor, reload: bool) -> None:
        pkg_dir = Path(desc.install_dir)
        self.host.add_to_load_path(pkg_dir)
        autoloads = pkg_dir / autoloads_file_name(desc.name)
        try:
            if autoloads.is_file():
                self.host.load_file(autoloads)
            else:
                logger.warning("No autoloads file for %s in %s", desc.full_name, pkg_dir)
            if reload:
                self._reload_previous(desc, pkg_dir)
        except (OSError, DescriptorError) as exc:
            raise ActivationError(desc.name, f"load failure: {exc}") from exc

    def _reload_previous(self, desc: PackageDescriptor, pkg_dir: Path) -> None:
        skip = {
            autoloads_file_name(desc.name),
            f"{desc.name}{Constants.DESCRIPTION_SUFFIX}",
        }
        for path in sorted(pkg_dir.rglob(f"*{Constants.SOURCE_SUFFIX}")):
            if path.name in skip or not self.host.was_loaded(path.name):
                continue
            logger.info("Reloading %s", path)
            self.host.load_file(path)

    def activate_by_name(self, name: str) -> bool:
        """Activate the best installed version of ``name`` the policy allows.

        Raises:
            ActivationError: Nothing suitable is installed.
        """
        if self.store.builtin_p(name):
            return True
        desc = self.best_allowed(name)
        if desc is None:
            raise ActivationError(name, "no installed version is allowed by the hold policy")
        return self.activate(desc)

    def activate_all(self, descs: Iterable[PackageDescriptor]) -> ActivationReport:
        """Activate every descriptor; one failure never stops the others."""
        report = ActivationReport()
        for desc in descs:
            if not self.policy.allows(desc.name, desc.version):
                report.skipped.append(desc.full_name)
                continue
            try:
                self.activate(desc)
            except ActivationError as exc:
                logger.warning("%s", exc)
                report.failures[desc.name] = exc
            else:
                report.activated.append(desc.name)
        return report
