"""
fwpolicy_audit — Dominance-based audit of firmware update routines
===================================================================

Checks, offline and statically, that every path reaching a sensitive
``install`` call has first

  1. verified the update's signature,
  2. rejected a version rollback,
  3. validated the update's origin,

and that the call itself sits behind a conditional guard.  The package
consumes an already-built control-flow graph and returns an advisory
verdict; it never modifies or instruments the analysed program.

Quick start
-----------
>>> from fwpolicy_audit import Call, Ref, build_cfg, audit_function
>>> cfg = build_cfg("updateFirmware", "entry", {
...     "entry": [Call("install", (Ref("pkg"),))],
... })
>>> audit_function(cfg).verdict
<Verdict.INSECURE: 'INSECURE'>

Package layout
--------------
::

    fwpolicy_audit/
    ├── __init__.py            ← this file
    ├── ctrlflow_graph.py      CFG model, build_cfg, cfg_summary
    ├── ctrlflow_analysis.py   DominatorTree
    ├── provenance.py          operand provenance tracing
    ├── classifier.py          instruction classification
    ├── rules.py               the four policy rules
    ├── report.py              findings, reports, verdicts
    ├── auditor.py             audit_function / audit_functions
    ├── policy.py              PolicyConfig
    ├── errors.py              exception types
    └── log.py                 opt-in logging setup
"""

from __future__ import annotations

import logging
from typing import List

__version__ = "0.1.0"
__license__ = "MIT"

from fwpolicy_audit.auditor import (
    AuditRunResults,
    AuditStatus,
    FunctionAudit,
    audit_function,
    audit_functions,
)
from fwpolicy_audit.classifier import (
    Category,
    ClassificationFacts,
    SensitiveSite,
    classify,
)
from fwpolicy_audit.ctrlflow_analysis import DominatorTree, compute_dominators
from fwpolicy_audit.ctrlflow_graph import (
    BasicBlock,
    Branch,
    Call,
    Comparison,
    Constant,
    ControlFlowGraph,
    Deref,
    FieldAccess,
    IndexAccess,
    Other,
    Ref,
    build_cfg,
    cfg_summary,
)
from fwpolicy_audit.errors import (
    FwAuditError,
    MalformedGraphError,
    PolicyConfigError,
)
from fwpolicy_audit.log import configure_logging
from fwpolicy_audit.policy import DEFAULT_POLICY, GuardMode, PolicyConfig
from fwpolicy_audit.provenance import TraceOutcome, trace_operand
from fwpolicy_audit.report import AuditReport, RuleFinding, Verdict, build_report
from fwpolicy_audit.rules import RULES, evaluate_rules

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__: List[str] = [
    "AuditReport",
    "AuditRunResults",
    "AuditStatus",
    "BasicBlock",
    "Branch",
    "Call",
    "Category",
    "ClassificationFacts",
    "Comparison",
    "Constant",
    "ControlFlowGraph",
    "DEFAULT_POLICY",
    "Deref",
    "DominatorTree",
    "FieldAccess",
    "FunctionAudit",
    "FwAuditError",
    "GuardMode",
    "IndexAccess",
    "MalformedGraphError",
    "Other",
    "PolicyConfig",
    "PolicyConfigError",
    "RULES",
    "Ref",
    "RuleFinding",
    "SensitiveSite",
    "TraceOutcome",
    "Verdict",
    "audit_function",
    "audit_functions",
    "build_cfg",
    "build_report",
    "cfg_summary",
    "classify",
    "compute_dominators",
    "configure_logging",
    "evaluate_rules",
    "trace_operand",
]
