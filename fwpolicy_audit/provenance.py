# fwpolicy_audit/provenance.py
"""
Operand provenance tracing.

Decides whether a comparison operand ultimately reads the versioned
device state.  Two root shapes count:

    current_version               the configured scalar, possibly loaded
                                  through any number of ``Deref`` steps
    device_config.version         a ``FieldAccess`` of the configured
    (*cfg_ptr)->version           version field whose base resolves to
    device_config[i].version      the configured aggregate

``Deref`` and ``IndexAccess`` steps are transparent.  An aggregate match
crosses exactly one ``FieldAccess``, naming the version field, so
neither ``device_config.meta.version`` nor ``device_config.version[0].build``
matches.

The walk is iterative and bounded by the block count of the CFG, unless
the policy overrides it.  Running out of budget means "not matched",
never an error.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Optional

from fwpolicy_audit.ctrlflow_graph import (
    Constant,
    Deref,
    FieldAccess,
    IndexAccess,
    Operand,
    Ref,
)
from fwpolicy_audit.policy import PolicyConfig

_log = logging.getLogger(__name__)

class TraceOutcome(enum.Enum):
    SCALAR = "scalar"              # rooted at the version scalar
    AGGREGATE = "aggregate"        # version field of the aggregate
    UNRELATED = "unrelated"        # resolved, but to something else
    BOUND_EXCEEDED = "bound-exceeded"


@dataclass(frozen=True)
class TraceResult:
    outcome: TraceOutcome
    root: Optional[str] = None
    steps: int = 0

    @property
    def matched(self) -> bool:
        return self.outcome in (TraceOutcome.SCALAR, TraceOutcome.AGGREGATE)


def trace_bound(block_count: int, policy: PolicyConfig) -> int:
    """Return the step budget for one trace in a CFG of *block_count* blocks."""
    if policy.max_trace_depth is not None:
        return policy.max_trace_depth
    return block_count


def trace_operand(operand: Operand, policy: PolicyConfig, bound: int) -> TraceResult:
    """Follow *operand* back to its root in at most *bound* access steps."""
    field_name: Optional[str] = None
    field_count = 0
    steps = 0
    cur = operand
    while True:
        if isinstance(cur, Ref):
            return _classify_root(cur.name, field_count, field_name,
                                  policy, steps)
        if isinstance(cur, Constant):
            return TraceResult(TraceOutcome.UNRELATED, None, steps)
        if steps >= bound:
            _log.debug("provenance trace of %s exceeded bound %d",
                       operand, bound)
            return TraceResult(TraceOutcome.BOUND_EXCEEDED, None, steps)
        steps += 1
        if isinstance(cur, FieldAccess):
            field_count += 1
            field_name = cur.field
            cur = cur.base
        elif isinstance(cur, (Deref, IndexAccess)):
            cur = cur.base
        else:
            raise TypeError(f"not an operand: {cur!r}")


def _classify_root(
    name: str,
    field_count: int,
    field_name: Optional[str],
    policy: PolicyConfig,
    steps: int,
) -> TraceResult:
    if field_count == 0 and name == policy.version_scalar:
        return TraceResult(TraceOutcome.SCALAR, name, steps)
    if (field_count == 1
            and name == policy.version_aggregate
            and field_name == policy.version_field):
        return TraceResult(TraceOutcome.AGGREGATE, name, steps)
    return TraceResult(TraceOutcome.UNRELATED, name, steps)


def reads_version_state(operand: Operand, policy: PolicyConfig, bound: int) -> bool:
    return trace_operand(operand, policy, bound).matched
