# fwpolicy_audit/policy.py
"""
Policy configuration.

The audit is parameterised by the names it looks for rather than by
compiled-in constants, so one engine can audit update routines across
code bases that spell things differently.

    sensitive_operation   call whose execution installs the update
    signature_predicate   call that verifies the update's signature
    source_predicate      call that validates the update's origin
    version_scalar        global holding the running version
    version_aggregate     record holding device state ...
    version_field         ... and the member of it that is the version

Defaults match the reference firmware updater (``install``,
``verifySignature``, ``sourceTrusted``, ``current_version``,
``device_config.version``).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional

from fwpolicy_audit.errors import PolicyConfigError


class GuardMode(enum.Enum):
    """How rule FWU-04 decides that the sensitive call is guarded."""

    IMMEDIATE = "immediate"    # every direct predecessor ends in a conditional branch
    ALL_PATHS = "all-paths"    # every block on an entry path ends in a conditional branch


@dataclass(frozen=True)
class PolicyConfig:
    """The names and knobs one audit is run with."""

    sensitive_operation: str = "install"
    signature_predicate: str = "verifySignature"
    source_predicate: str = "sourceTrusted"
    version_scalar: str = "current_version"
    version_aggregate: str = "device_config"
    version_field: str = "version"
    guard_mode: GuardMode = GuardMode.IMMEDIATE
    max_trace_depth: Optional[int] = None

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "guard_mode":
                if not isinstance(value, GuardMode):
                    raise PolicyConfigError(
                        f"expected GuardMode, got {value!r}", key=f.name)
            elif f.name == "max_trace_depth":
                if value is not None and (
                    isinstance(value, bool)
                    or not isinstance(value, int)
                    or value < 1
                ):
                    raise PolicyConfigError(
                        f"must be a positive integer, got {value!r}",
                        key=f.name)
            elif not isinstance(value, str) or not value.strip():
                raise PolicyConfigError(
                    f"must be a non-empty string, got {value!r}", key=f.name)

    # ---- plain-data round trip ---------------------------------------

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PolicyConfig":
        """Build a config from plain data, e.g. a parsed JSON object.

        Keys are the field names; missing keys take their defaults.
        ``guard_mode`` may be given as a :class:`GuardMode` or its value.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise PolicyConfigError(
                f"unknown policy key(s): {', '.join(unknown)}")
        kwargs: Dict[str, Any] = dict(data)
        mode = kwargs.get("guard_mode")
        if mode is not None and not isinstance(mode, GuardMode):
            try:
                kwargs["guard_mode"] = GuardMode(mode)
            except ValueError:
                choices = ", ".join(m.value for m in GuardMode)
                raise PolicyConfigError(
                    f"expected one of {choices}, got {mode!r}",
                    key="guard_mode") from None
        return cls(**kwargs)

    def to_mapping(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            out[f.name] = value.value if isinstance(value, GuardMode) else value
        return out


DEFAULT_POLICY = PolicyConfig()
