"""
fwpolicy_audit/auditor.py
═════════════════════════

Runs the policy engine over one function or a batch of functions.

Pipeline per function::

    ControlFlowGraph ──validate──► DominatorTree
            │                          │
            └──► classify ──► facts ───┴──► evaluate_rules (per site)
                                                   │
                                             build_report

Outcomes
────────
  AUDITED           one AuditReport per sensitive call site
  NOTHING_TO_AUDIT  the function never calls the sensitive operation
  MALFORMED         the CFG was rejected; no report is produced

:func:`audit_function` raises :class:`MalformedGraphError` for bad
input.  :func:`audit_functions` records it as a MALFORMED outcome and
moves on to the next function.

Every run is a pure function of its inputs: nothing is cached between
calls, so independent workers may audit disjoint CFGs concurrently.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from fwpolicy_audit.classifier import classify
from fwpolicy_audit.ctrlflow_analysis import compute_dominators
from fwpolicy_audit.ctrlflow_graph import ControlFlowGraph
from fwpolicy_audit.errors import MalformedGraphError
from fwpolicy_audit.policy import DEFAULT_POLICY, PolicyConfig
from fwpolicy_audit.report import AuditReport, Verdict, build_report
from fwpolicy_audit.rules import evaluate_rules

_log = logging.getLogger(__name__)


class AuditStatus(Enum):
    AUDITED = "audited"
    NOTHING_TO_AUDIT = "nothing-to-audit"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class FunctionAudit:
    """Outcome of auditing one function."""

    function_name: str
    status: AuditStatus
    reports: Tuple[AuditReport, ...] = ()
    error: Optional[str] = None

    @property
    def verdict(self) -> Optional[Verdict]:
        """SECURE if every site is secure, INSECURE if any is not.

        ``None`` when there was nothing to audit or the CFG was malformed.
        """
        if self.status is not AuditStatus.AUDITED:
            return None
        if all(r.is_secure for r in self.reports):
            return Verdict.SECURE
        return Verdict.INSECURE

    def to_dict(self) -> Dict[str, Any]:
        verdict = self.verdict
        return {
            "function": self.function_name,
            "status": self.status.value,
            "verdict": verdict.value if verdict else None,
            "error": self.error,
            "reports": [r.to_dict() for r in self.reports],
        }

    def format_text(self) -> str:
        if self.status is AuditStatus.MALFORMED:
            return f"{self.function_name}: MALFORMED ({self.error})"
        if self.status is AuditStatus.NOTHING_TO_AUDIT:
            return f"{self.function_name}: nothing to audit"
        return "\n".join(r.format_text() for r in self.reports)


def audit_function(
    cfg: ControlFlowGraph,
    policy: PolicyConfig = DEFAULT_POLICY,
) -> FunctionAudit:
    """Audit every sensitive call in *cfg* against *policy*.

    Raises
    ------
    MalformedGraphError
        If the CFG is structurally unsound.
    """
    cfg.validate()
    facts = classify(cfg, policy)
    if not facts.sensitive_sites:
        _log.info("%s: no call to %s(), nothing to audit",
                  cfg.function_name, policy.sensitive_operation)
        return FunctionAudit(cfg.function_name, AuditStatus.NOTHING_TO_AUDIT)

    domtree = compute_dominators(cfg)
    reports: List[AuditReport] = []
    for index, site in enumerate(facts.sensitive_sites):
        findings = evaluate_rules(cfg, domtree, facts, site.block, policy)
        report = build_report(
            cfg.function_name, site.block, index, findings,
            domtree.all_dominators(site.block),
        )
        _log.info("%s: %s() in block '%s': %s (%d/%d rules passed)",
                  cfg.function_name, policy.sensitive_operation, site.block,
                  report.verdict.value, report.passed_count,
                  len(report.findings))
        reports.append(report)
    return FunctionAudit(cfg.function_name, AuditStatus.AUDITED, tuple(reports))


@dataclass
class AuditRunResults:
    """
    Aggregate results from auditing a batch of functions.

    Attributes
    ----------
    audits : one FunctionAudit per input CFG, in input order
    stats  : timing statistics keyed "<position>:<function>_elapsed_ms",
             position being the index of the CFG in the input batch
    """
    audits: List[FunctionAudit] = field(default_factory=list)
    stats: Dict[str, float] = field(default_factory=dict)

    def by_status(self, status: AuditStatus) -> List[FunctionAudit]:
        return [a for a in self.audits if a.status is status]

    def by_verdict(self, verdict: Verdict) -> List[FunctionAudit]:
        return [a for a in self.audits if a.verdict is verdict]

    @property
    def secure_count(self) -> int:
        return len(self.by_verdict(Verdict.SECURE))

    @property
    def insecure_count(self) -> int:
        return len(self.by_verdict(Verdict.INSECURE))

    @property
    def malformed_count(self) -> int:
        return len(self.by_status(AuditStatus.MALFORMED))

    @property
    def total_count(self) -> int:
        return len(self.audits)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "functions": [a.to_dict() for a in self.audits],
            "secure": self.secure_count,
            "insecure": self.insecure_count,
            "malformed": self.malformed_count,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    def summary(self) -> str:
        """Human-readable summary."""
        nothing = len(self.by_status(AuditStatus.NOTHING_TO_AUDIT))
        lines = [
            f"Audit complete: {self.total_count} functions "
            f"({self.secure_count} secure, {self.insecure_count} insecure, "
            f"{nothing} nothing to audit, {self.malformed_count} malformed)",
        ]
        for index, audit in enumerate(self.audits):
            verdict = audit.verdict
            label = verdict.value if verdict else audit.status.value
            elapsed = self.stats.get(_stats_key(index, audit.function_name), 0)
            lines.append(f"  {audit.function_name}: {label} ({elapsed:.1f}ms)")
        return "\n".join(lines)


def _stats_key(index: int, function_name: str) -> str:
    return f"{index}:{function_name}_elapsed_ms"


def audit_functions(
    cfgs: Iterable[ControlFlowGraph],
    policy: PolicyConfig = DEFAULT_POLICY,
) -> AuditRunResults:
    """Audit each CFG in turn; a malformed CFG does not stop the batch."""
    results = AuditRunResults()
    for index, cfg in enumerate(cfgs):
        t0 = time.monotonic()
        try:
            audit = audit_function(cfg, policy)
        except MalformedGraphError as exc:
            _log.warning("%s", exc)
            audit = FunctionAudit(
                cfg.function_name, AuditStatus.MALFORMED, error=str(exc))
        results.stats[_stats_key(index, cfg.function_name)] = (
            (time.monotonic() - t0) * 1000.0
        )
        results.audits.append(audit)
    return results
