# fwpolicy_audit/errors.py
"""
Error types for fwpolicy-audit.

Only conditions that make an analysis impossible are raised.  Everything
else an audit can run into (no sensitive call, an unreachable sensitive
call, a provenance trace that runs out of budget) is represented in the
returned data.

Hierarchy
---------
    FwAuditError            base class
    ├── MalformedGraphError inconsistent or entry-less CFG
    └── PolicyConfigError   invalid policy configuration
"""

from __future__ import annotations

from typing import List, Optional, Sequence


class FwAuditError(Exception):
    """Base exception for all fwpolicy-audit errors."""


class MalformedGraphError(FwAuditError):
    """Raised when a control-flow graph cannot be analysed.

    Attributes
    ----------
    function_name : name of the function whose CFG was rejected
    problems      : one human-readable line per structural defect
    """

    def __init__(
        self,
        function_name: str,
        problems: Sequence[str],
    ) -> None:
        self.function_name = function_name
        self.problems: List[str] = list(problems)
        if len(self.problems) == 1:
            detail = self.problems[0]
        else:
            detail = "; ".join(self.problems)
        super().__init__(f"malformed CFG for '{function_name}': {detail}")


class PolicyConfigError(FwAuditError):
    """Raised when a policy configuration is invalid."""

    def __init__(self, message: str, key: Optional[str] = None) -> None:
        self.key = key
        if key:
            message = f"{key}: {message}"
        super().__init__(message)
