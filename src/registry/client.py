"""Archive client: fetch indexes and artifacts, verify signatures, cache indexes."""
from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from common.errors import ElpmError, FetchError
from common.http_client import robust_get
from common.logging_utils import extra_context, is_debug_enabled
from constants import Constants, SignaturePolicy
from packages.descriptor import PackageDescriptor
from registry.index import parse_archive_contents
from registry.signature import GoodSignature, SignatureChecker, verify_signature
from registry.sources import ArchiveSource
from registry.upstream import DownloadTracker, UpstreamClient

logger = logging.getLogger(__name__)


@dataclass
class RefreshResult:
    """Outcome of refreshing several archives."""

    indexes: Dict[str, List[PackageDescriptor]] = field(default_factory=dict)
    errors: Dict[str, ElpmError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class VerifiedArtifact:
    """Artifact bytes that passed the signature policy."""

    descriptor: PackageDescriptor
    data: bytes
    signatures: List[GoodSignature]

    @property
    def signed(self) -> bool:
        return bool(self.signatures)


class ArchiveClient:
    """Fetches archive indexes and package artifacts.

    Indexes are fetched concurrently through an ``UpstreamClient``; artifacts
    are downloaded synchronously during installation. Local archives are
    read straight from disk.
    """

    def __init__(
        self,
        cache_dir: Path,
        checker: SignatureChecker,
        *,
        unsigned_archives: Iterable[str] = (),
        upstream_factory: Callable[[], UpstreamClient] = UpstreamClient,
    ):
        self.cache_dir = Path(cache_dir).expanduser()
        self.checker = checker
        self.unsigned_archives = set(unsigned_archives)
        self.tracker = DownloadTracker()
        self._upstream_factory = upstream_factory

    # ------------------------------------------------------------------
    # cache
    def cache_path(self, archive: ArchiveSource) -> Path:
        return self.cache_dir / Constants.ARCHIVE_CACHE_SUBDIR / archive.name / Constants.ARCHIVE_CONTENTS_FILE

    def _write_cache(self, archive: ArchiveSource, raw: bytes) -> None:
        path = self.cache_path(archive)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=".archive-contents-")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(raw)
            os.replace(tmp, path)
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def load_cached_indexes(self, archives: Sequence[ArchiveSource]) -> Dict[str, List[PackageDescriptor]]:
        """Read every cached index without touching the network."""
        indexes: Dict[str, List[PackageDescriptor]] = {}
        for archive in archives:
            path = self.cache_path(archive)
            if not path.is_file():
                continue
            try:
                indexes[archive.name] = parse_archive_contents(path.read_text(encoding="utf-8"), archive.name)
            except (OSError, UnicodeDecodeError, FetchError) as exc:
                logger.warning("Ignoring cached index for %s: %s", archive.name, exc)
        return indexes

    # ------------------------------------------------------------------
    # policy
    def policy_for(self, archive: ArchiveSource) -> SignaturePolicy:
        if archive.name in self.unsigned_archives:
            return SignaturePolicy.OFF
        return self.checker.policy

    def verify_signature(self, data: bytes, signature: bytes) -> List[GoodSignature]:
        """Verify ``signature`` over ``data`` against the keyring; strict."""
        return verify_signature(data, signature, self.checker.keyring)

    # ------------------------------------------------------------------
    # indexes
    async def _read(
        self,
        archive: ArchiveSource,
        file_name: str,
        upstream: Optional[UpstreamClient],
        *,
        allow_missing: bool = False,
    ) -> Optional[bytes]:
        if not archive.is_remote:
            path = archive.local_path / file_name
            if not path.is_file():
                if allow_missing:
                    return None
                raise FetchError(f"No such file: {path}", archive=archive.name, url=str(path))
            try:
                return path.read_bytes()
            except OSError as exc:
                raise FetchError(f"Cannot read {path}: {exc}", archive=archive.name, url=str(path)) from exc
        if upstream is None:
            raise FetchError("No HTTP client for remote archive", archive=archive.name, url=archive.location)
        return await upstream.fetch(archive.url_for(file_name), archive=archive.name, allow_missing=allow_missing)

    async def fetch_archive_index_async(
        self, archive: ArchiveSource, upstream: Optional[UpstreamClient] = None
    ) -> List[PackageDescriptor]:
        """Fetch, verify and parse one archive's index, then cache it."""
        own_upstream = upstream is None and archive.is_remote
        if own_upstream:
            upstream = self._upstream_factory()
        try:
            with self.tracker.track(archive.name):
                name = Constants.ARCHIVE_CONTENTS_FILE
                raw = await self._read(archive, name, upstream)
                policy = self.policy_for(archive)
                signature = None
                if policy is not SignaturePolicy.OFF:
                    signature = await self._read(
                        archive, name + Constants.SIGNATURE_SUFFIX, upstream, allow_missing=True
                    )
                self.checker.check(f"{archive.name}/{name}", raw, signature, policy=policy)
                try:
                    text = raw.decode("utf-8")
                except UnicodeDecodeError as exc:
                    raise FetchError("Archive contents are not UTF-8", archive=archive.name) from exc
                descriptors = parse_archive_contents(text, archive.name)
                self._write_cache(archive, raw)
        finally:
            if own_upstream and upstream is not None:
                await upstream.stop()
        logger.info("Fetched %d package(s) from archive %s", len(descriptors), archive.name)
        return descriptors

    def fetch_archive_index(self, archive: ArchiveSource) -> List[PackageDescriptor]:
        return asyncio.run(self.fetch_archive_index_async(archive))

    async def refresh_async(self, archives: Sequence[ArchiveSource]) -> RefreshResult:
        """Fetch every archive's index concurrently.

        One archive failing is logged and recorded; the others still count.
        """
        self.tracker.ensure_idle(a.name for a in archives)
        result = RefreshResult()
        upstream = self._upstream_factory() if any(a.is_remote for a in archives) else None
        try:
            outcomes = await asyncio.gather(
                *(self.fetch_archive_index_async(a, upstream) for a in archives),
                return_exceptions=True,
            )
        finally:
            if upstream is not None:
                await upstream.stop()
        for archive, outcome in zip(archives, outcomes):
            if isinstance(outcome, ElpmError):
                logger.error("Failed to download '%s' archive: %s", archive.name, outcome)
                result.errors[archive.name] = outcome
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                result.indexes[archive.name] = outcome
        if is_debug_enabled(logger):
            logger.debug(
                "Refresh finished",
                extra=extra_context(
                    event="refresh",
                    component="archive_client",
                    outcome="success" if result.ok else "partial",
                    count=len(result.indexes),
                ),
            )
        return result

    def refresh(self, archives: Sequence[ArchiveSource]) -> RefreshResult:
        return asyncio.run(self.refresh_async(archives))

    # ------------------------------------------------------------------
    # artifacts
    def _read_sync(self, archive: ArchiveSource, file_name: str, *, allow_missing: bool = False) -> Optional[bytes]:
        if archive.is_remote:
            return robust_get(archive.url_for(file_name), context=archive.name, allow_missing=allow_missing)
        path = archive.local_path / file_name
        if not path.is_file():
            if allow_missing:
                return None
            raise FetchError(f"No such file: {path}", archive=archive.name, url=str(path))
        try:
            return path.read_bytes()
        except OSError as exc:
            raise FetchError(f"Cannot read {path}: {exc}", archive=archive.name, url=str(path)) from exc

    def fetch_artifact(self, archive: ArchiveSource, desc: PackageDescriptor) -> bytes:
        """Download the raw artifact for ``desc``."""
        return self._read_sync(archive, desc.artifact_name())

    def download(self, archive: ArchiveSource, desc: PackageDescriptor) -> VerifiedArtifact:
        """Download ``desc`` and apply the signature policy.

        Raises:
            FetchError: The artifact could not be fetched.
            SignatureError: The policy rejects the artifact.
        """
        with self.tracker.track(archive.name):
            data = self.fetch_artifact(archive, desc)
            policy = self.policy_for(archive)
            signature = None
            if policy is not SignaturePolicy.OFF:
                signature = self._read_sync(
                    archive, desc.artifact_name() + Constants.SIGNATURE_SUFFIX, allow_missing=True
                )
            good = self.checker.check(desc.artifact_name(), data, signature, policy=policy)
        return VerifiedArtifact(descriptor=desc, data=data, signatures=good)
