"""
fwpolicy_audit/report.py
════════════════════════

Audit findings and their aggregation into a verdict.

A :class:`RuleFinding` is the outcome of one policy rule for one
sensitive call site.  :func:`build_report` folds the four findings of a
site into an :class:`AuditReport`; it makes no judgement beyond
"SECURE iff every rule passed".

Reports are frozen values.  Rendering helpers return strings and never
write anywhere, so the same report can be re-rendered as text for a
reviewer or as JSON for a pipeline:

    report.format_text()
    report.to_json()        # sorted keys, byte-stable across runs
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Sequence, Tuple


class Verdict(Enum):
    SECURE = "SECURE"
    INSECURE = "INSECURE"


@dataclass(frozen=True)
class RuleFinding:
    """
    Outcome of one policy rule.

    Attributes
    ----------
    rule_id     : stable identifier, e.g. "FWU-01"
    name        : short rule name, e.g. "signature"
    description : what the rule requires
    passed      : whether the requirement holds
    detail      : which block supplied the evidence, or why none was found
    evidence    : ids of the blocks that satisfied the rule (may be empty)
    cwe         : CWE identifier of the weakness a failure indicates
    """
    rule_id: str
    name: str
    description: str
    passed: bool
    detail: str
    evidence: Tuple[str, ...] = ()
    cwe: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule": self.rule_id,
            "name": self.name,
            "description": self.description,
            "passed": self.passed,
            "detail": self.detail,
            "evidence": list(self.evidence),
            "cwe": self.cwe,
        }

    def format_line(self) -> str:
        status = "PASS" if self.passed else "FAIL"
        return f"[{status}] {self.rule_id} {self.name}: {self.detail}"


@dataclass(frozen=True)
class AuditReport:
    """
    Verdict for one sensitive call site.

    Attributes
    ----------
    function_name   : analysed function
    sensitive_block : block containing the sensitive call
    site_index      : ordinal of the call among the function's sensitive calls
    findings        : exactly four findings, in rule order
    passed_count    : number of passing findings
    failed_count    : number of failing findings
    verdict         : SECURE iff failed_count == 0
    dominators      : sensitive_block and every block dominating it,
                      nearest first
    """
    function_name: str
    sensitive_block: str
    site_index: int
    findings: Tuple[RuleFinding, ...]
    passed_count: int
    failed_count: int
    verdict: Verdict
    dominators: Tuple[str, ...] = ()

    @property
    def is_secure(self) -> bool:
        return self.verdict is Verdict.SECURE

    def finding(self, rule_id: str) -> RuleFinding:
        for f in self.findings:
            if f.rule_id == rule_id:
                return f
        raise KeyError(rule_id)

    def failed_findings(self) -> List[RuleFinding]:
        return [f for f in self.findings if not f.passed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "function": self.function_name,
            "sensitive_block": self.sensitive_block,
            "site": self.site_index,
            "verdict": self.verdict.value,
            "passed": self.passed_count,
            "failed": self.failed_count,
            "dominators": list(self.dominators),
            "findings": [f.to_dict() for f in self.findings],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    def format_text(self) -> str:
        if self.is_secure:
            head = "SECURE (all rules passed)"
        else:
            head = (f"INSECURE ({self.failed_count} of "
                    f"{len(self.findings)} rules failed)")
        lines = [
            f"{self.function_name} [site {self.site_index}, "
            f"block '{self.sensitive_block}']: {head}",
        ]
        lines.extend(f"  {f.format_line()}" for f in self.findings)
        return "\n".join(lines)


def build_report(
    function_name: str,
    sensitive_block: str,
    site_index: int,
    findings: Sequence[RuleFinding],
    dominators: Sequence[str] = (),
) -> AuditReport:
    """Aggregate *findings* into an :class:`AuditReport`."""
    passed = sum(1 for f in findings if f.passed)
    failed = len(findings) - passed
    return AuditReport(
        function_name=function_name,
        sensitive_block=sensitive_block,
        site_index=site_index,
        findings=tuple(findings),
        passed_count=passed,
        failed_count=failed,
        verdict=Verdict.SECURE if failed == 0 else Verdict.INSECURE,
        dominators=tuple(dominators),
    )
