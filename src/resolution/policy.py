"""User hold/disable policy for packages."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from common.errors import ConfigError, InvalidVersionError, UnsatisfiableReason
from versioning.vector import VersionVector


class HoldKind(Enum):
    UNRESTRICTED = "unrestricted"
    DISABLED = "disabled"
    HELD = "held"


@dataclass(frozen=True)
class Hold:
    kind: HoldKind
    version: Optional[VersionVector] = None
    version_text: Optional[str] = None


UNRESTRICTED = Hold(HoldKind.UNRESTRICTED)


@dataclass
class HoldPolicy:
    """Maps package names to a hold.

    ``disabled`` removes a package from resolution and activation entirely;
    a held package only accepts its exact held version.
    """

    holds: Dict[str, Hold] = field(default_factory=dict)

    @classmethod
    def from_config(cls, raw: Optional[Mapping[str, Any]]) -> "HoldPolicy":
        """Build from the ``hold:`` configuration mapping.

        Values: ``false``/``"disabled"`` disable the package, ``true``/``"any"``
        leave it unrestricted, any other string pins that exact version.
        """
        holds: Dict[str, Hold] = {}
        for name, value in (raw or {}).items():
            if value is False or value is None or str(value).lower() == "disabled":
                holds[str(name)] = Hold(HoldKind.DISABLED)
            elif value is True or str(value).lower() in ("any", "unrestricted"):
                holds[str(name)] = UNRESTRICTED
            else:
                text = str(value)
                try:
                    holds[str(name)] = Hold(HoldKind.HELD, VersionVector.parse(text), text)
                except InvalidVersionError as exc:
                    raise ConfigError(f"Invalid held version for {name}: {exc}") from exc
        return cls(holds=holds)

    def hold_for(self, name: str) -> Hold:
        return self.holds.get(name, UNRESTRICTED)

    def disable(self, name: str) -> None:
        self.holds[name] = Hold(HoldKind.DISABLED)

    def hold(self, name: str, version: str) -> None:
        self.holds[name] = Hold(HoldKind.HELD, VersionVector.parse(version), version)

    def release(self, name: str) -> None:
        self.holds.pop(name, None)

    def disabled_reason(self, name: str, version: VersionVector) -> Optional[UnsatisfiableReason]:
        """Why ``name`` at ``version`` is blocked, or None when allowed."""
        hold = self.hold_for(name)
        if hold.kind is HoldKind.DISABLED:
            return UnsatisfiableReason.DISABLED
        if hold.kind is HoldKind.HELD and hold.version != version:
            return UnsatisfiableReason.HELD
        return None

    def allows(self, name: str, version: VersionVector) -> bool:
        return self.disabled_reason(name, version) is None
