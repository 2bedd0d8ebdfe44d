"""CLI overrides applied on top of file and environment configuration.

Extracted from elpm.py to keep the entrypoint slim. CLI flags take the
highest precedence.
"""

from __future__ import annotations

import logging
from pathlib import Path

from config import Settings, parse_signature_policy

logger = logging.getLogger(__name__)


def apply_cli_overrides(args, settings: Settings) -> Settings:
    """Apply global CLI flags to ``settings`` and return it."""
    if getattr(args, "PACKAGE_DIR", None):
        settings.package_dir = Path(args.PACKAGE_DIR).expanduser()
    if getattr(args, "CACHE_DIR", None):
        settings.cache_dir = Path(args.CACHE_DIR).expanduser()
    if getattr(args, "SIGNATURE_POLICY", None):
        settings.signature_policy = parse_signature_policy(args.SIGNATURE_POLICY)
    if getattr(args, "OFFLINE", False):
        settings.offline = True
    logger.debug(
        "Effective settings: package_dir=%s cache_dir=%s signature_policy=%s offline=%s",
        settings.package_dir,
        settings.cache_dir,
        settings.signature_policy.value,
        settings.offline,
    )
    return settings
