"""Transaction resolution.

Computes the full, dependency-ordered list of descriptors needed to install
a request. Resolution reads the store and never mutates it: either the whole
transaction resolves or ``UnsatisfiableError`` is raised before anything is
downloaded.

Dependency cycles are tolerated. When a cycle prevents a strict ordering the
earliest-discovered package of the cycle is emitted first and a diagnostic
is logged, so one dependency edge of the cycle is not honored by the install
order.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, FrozenSet, List, Optional, Sequence, Tuple

from common.errors import UnsatisfiableError, UnsatisfiableReason
from common.logging_utils import extra_context, is_debug_enabled
from packages.descriptor import PackageDescriptor, Requirement
from packages.store import DescriptorStore
from resolution.policy import HoldPolicy

logger = logging.getLogger(__name__)

Key = Tuple[str, object]


@dataclass
class Transaction:
    """Resolved descriptors in install order, plus cycle diagnostics."""

    packages: List[PackageDescriptor]
    cycles: List[str] = field(default_factory=list)

    def __iter__(self):
        return iter(self.packages)

    def __len__(self) -> int:
        return len(self.packages)

    def names(self) -> List[str]:
        return [d.name for d in self.packages]


class TransactionResolver:
    """Resolves requested descriptors against a ``DescriptorStore``."""

    def __init__(self, store: DescriptorStore, policy: Optional[HoldPolicy] = None):
        self.store = store
        self.policy = policy or HoldPolicy()

    def compute_transaction(self, requested: Sequence[PackageDescriptor]) -> Transaction:
        """Return every descriptor needed for ``requested``, dependencies first.

        Raises:
            UnsatisfiableError: A requirement cannot be met.
        """
        packages: List[PackageDescriptor] = []
        cycles: List[str] = []
        queue: Deque[Tuple[PackageDescriptor, FrozenSet[Key]]] = deque()
        for desc in requested:
            if any(p.name == desc.name for p in packages):
                continue
            packages.append(desc)
            queue.append((desc, frozenset()))

        while queue:
            pkg, ancestors = queue.popleft()
            if pkg not in packages:
                # Replaced by a newer version while queued.
                continue
            chain = ancestors | {pkg.key}
            for req in pkg.requirements:
                already = _find(packages, req.name)
                if already is not None:
                    if req.satisfied_by(already.version):
                        continue
                    if already.key in chain:
                        message = f"Dependency cycle going through {already.full_name}"
                        logger.warning(message)
                        cycles.append(message)
                        continue
                    logger.info(
                        "%s needs %s, replacing %s being installed",
                        pkg.full_name, req, already.full_name,
                    )
                    packages.remove(already)
                if self.store.installed_p(req.name, req.min_version):
                    continue
                found = self.find_candidate(req)
                packages.append(found)
                queue.append((found, chain))

        ordered, sort_cycles = _sort_by_dependency(packages)
        cycles.extend(sort_cycles)
        if is_debug_enabled(logger):
            logger.debug(
                "Transaction computed",
                extra=extra_context(
                    event="resolve",
                    component="resolver",
                    outcome="success",
                    count=len(ordered),
                    cycles=len(cycles) or None,
                ),
            )
        return Transaction(packages=ordered, cycles=cycles)

    def find_candidate(self, req: Requirement) -> PackageDescriptor:
        """First archive candidate meeting ``req`` that the hold policy allows."""
        found_something = None
        problem: Optional[UnsatisfiableReason] = None
        for desc in self.store.available_for(req.name):
            if desc.version < req.min_version:
                # Candidates are ordered by archive priority, not version.
                if found_something is None:
                    found_something = desc.version
                continue
            reason = self.policy.disabled_reason(req.name, desc.version)
            if reason is not None:
                if problem is None:
                    problem = reason
                continue
            return desc

        if problem is not None:
            hold = self.policy.hold_for(req.name)
            raise UnsatisfiableError(
                req.name,
                req.min_version,
                problem,
                best_available=found_something,
                held_version=hold.version_text,
            )
        if found_something is not None:
            raise UnsatisfiableError(
                req.name, req.min_version, UnsatisfiableReason.TOO_OLD, best_available=found_something
            )
        raise UnsatisfiableError(req.name, req.min_version, UnsatisfiableReason.ABSENT)

    def resolve_names(self, names: Sequence[str]) -> Transaction:
        """Resolve packages requested by name, best available candidate each."""
        requested = []
        for name in names:
            requested.append(self.find_candidate(Requirement.of(name)))
        return self.compute_transaction(requested)


def _find(packages: List[PackageDescriptor], name: str) -> Optional[PackageDescriptor]:
    for desc in packages:
        if desc.name == name:
            return desc
    return None


def _sort_by_dependency(packages: List[PackageDescriptor]) -> Tuple[List[PackageDescriptor], List[str]]:
    """Order ``packages`` so none precedes a package it requires.

    Repeatedly emits the earliest-discovered package whose requirements
    within the set were already emitted.
    """
    names = {d.name for d in packages}
    remaining = list(packages)
    emitted: Dict[str, PackageDescriptor] = {}
    ordered: List[PackageDescriptor] = []
    cycles: List[str] = []
    while remaining:
        for index, desc in enumerate(remaining):
            deps = [r.name for r in desc.requirements if r.name in names and r.name != desc.name]
            if all(dep in emitted for dep in deps):
                break
        else:
            index, desc = 0, remaining[0]
            message = f"Dependency cycle going through {desc.full_name}"
            logger.warning(message)
            cycles.append(message)
        remaining.pop(index)
        emitted[desc.name] = desc
        ordered.append(desc)
    return ordered, cycles


def sort_for_removal(descs: Sequence[PackageDescriptor]) -> List[PackageDescriptor]:
    """Order ``descs`` so every package comes before its dependencies."""
    ordered, _ = _sort_by_dependency(list(descs))
    return list(reversed(ordered))
