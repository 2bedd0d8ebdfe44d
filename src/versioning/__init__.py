"""Version vectors and release-type ordering."""

from .vector import ReleaseType, VersionVector, ZERO

__all__ = ["ReleaseType", "VersionVector", "ZERO"]
