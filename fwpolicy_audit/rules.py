# fwpolicy_audit/rules.py
"""
The four-rule update policy.

For the block S holding a sensitive call:

  FWU-01  signature      a signature-check block dominates S      CWE-347
  FWU-02  rollback       a version-check block dominates S        CWE-1328
  FWU-03  source trust   a source-check block dominates S         CWE-346
  FWU-04  guard          S is reached only through conditional    CWE-696
                         branches

FWU-04 has two modes.  ``GuardMode.IMMEDIATE`` looks only at S's direct
predecessors: S must not be the entry block and each predecessor must
end in a conditional branch.  A path that is unconditional further
upstream is not caught.  ``GuardMode.ALL_PATHS`` is the stronger
variant: every reachable block lying on some path from the entry to S
must itself end in a conditional branch.

Rules are independent.  All four are always evaluated and reported.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence, Set, Tuple

from fwpolicy_audit.classifier import ClassificationFacts
from fwpolicy_audit.ctrlflow_analysis import DominatorTree
from fwpolicy_audit.ctrlflow_graph import ControlFlowGraph
from fwpolicy_audit.policy import GuardMode, PolicyConfig
from fwpolicy_audit.report import RuleFinding

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleSpec:
    rule_id: str
    name: str
    cwe: int

    def finding(
        self,
        description: str,
        passed: bool,
        detail: str,
        evidence: Sequence[str] = (),
    ) -> RuleFinding:
        return RuleFinding(
            rule_id=self.rule_id,
            name=self.name,
            description=description,
            passed=passed,
            detail=detail,
            evidence=tuple(evidence),
            cwe=self.cwe,
        )


SIGNATURE_RULE = RuleSpec("FWU-01", "signature", 347)
ROLLBACK_RULE = RuleSpec("FWU-02", "rollback", 1328)
SOURCE_RULE = RuleSpec("FWU-03", "source-trust", 346)
GUARD_RULE = RuleSpec("FWU-04", "conditional-guard", 696)

RULES: Tuple[RuleSpec, ...] = (
    SIGNATURE_RULE, ROLLBACK_RULE, SOURCE_RULE, GUARD_RULE,
)


def _quote(blocks: Sequence[str]) -> str:
    return ", ".join(f"'{b}'" for b in blocks)


def _descriptions(policy: PolicyConfig) -> Dict[str, str]:
    op = policy.sensitive_operation
    if policy.guard_mode is GuardMode.ALL_PATHS:
        guard = (f"every block on a path from entry to {op}() ends in a "
                 f"conditional branch")
    else:
        guard = (f"{op}() is reached only from blocks ending in a "
                 f"conditional branch")
    return {
        SIGNATURE_RULE.rule_id:
            f"{policy.signature_predicate}() is called on every path "
            f"to {op}()",
        ROLLBACK_RULE.rule_id:
            f"{policy.version_scalar} or {policy.version_aggregate}."
            f"{policy.version_field} is compared on every path to {op}()",
        SOURCE_RULE.rule_id:
            f"{policy.source_predicate}() is called on every path to {op}()",
        GUARD_RULE.rule_id: guard,
    }


# ---------------------------------------------------------------------------
#  Dominance rules (FWU-01 .. FWU-03)
# ---------------------------------------------------------------------------

def _dominance_finding(
    rule: RuleSpec,
    description: str,
    what: str,
    candidates: Sequence[str],
    target: str,
    domtree: DominatorTree,
    missing: Optional[str] = None,
) -> RuleFinding:
    evidence = [b for b in candidates if domtree.dominates(b, target)]
    if evidence:
        return rule.finding(
            description, True,
            f"{what} in block {_quote(evidence)} dominates block '{target}'",
            evidence,
        )
    if candidates:
        return rule.finding(
            description, False,
            f"{what} in block {_quote(candidates)} does not dominate "
            f"block '{target}'",
        )
    return rule.finding(
        description, False, missing or f"no {what} found in function",
    )


def _rollback_finding(
    description: str,
    facts: ClassificationFacts,
    target: str,
    domtree: DominatorTree,
    policy: PolicyConfig,
) -> RuleFinding:
    missing = None
    if facts.comparison_blocks:
        missing = (
            f"comparisons in block {_quote(facts.comparison_blocks)} do not "
            f"read {policy.version_scalar} or "
            f"{policy.version_aggregate}.{policy.version_field}"
        )
    return _dominance_finding(
        ROLLBACK_RULE, description, "version comparison",
        facts.version_check_blocks, target, domtree, missing,
    )


# ---------------------------------------------------------------------------
#  Guard rule (FWU-04)
# ---------------------------------------------------------------------------

def _guard_immediate(
    description: str,
    cfg: ControlFlowGraph,
    facts: ClassificationFacts,
    target: str,
) -> RuleFinding:
    if target == cfg.entry:
        return GUARD_RULE.finding(
            description, False,
            f"block '{target}' is the entry block and runs unconditionally",
        )
    preds = cfg.predecessors_of(target)
    unguarded = [p for p in preds if p not in facts.conditional_blocks]
    if unguarded:
        return GUARD_RULE.finding(
            description, False,
            f"block '{target}' is reached unconditionally from "
            f"block {_quote(unguarded)}",
        )
    return GUARD_RULE.finding(
        description, True,
        f"block '{target}' is reached only through conditional branches "
        f"in block {_quote(preds)}",
        preds,
    )


def _guard_all_paths(
    description: str,
    cfg: ControlFlowGraph,
    domtree: DominatorTree,
    facts: ClassificationFacts,
    target: str,
) -> RuleFinding:
    if target == cfg.entry:
        return GUARD_RULE.finding(
            description, False,
            f"block '{target}' is the entry block and runs unconditionally",
        )
    # blocks on some entry -> target path: reachable, and able to reach target
    on_path: Set[str] = set()
    worklist = [p for p in cfg.predecessors_of(target)
                if domtree.is_reachable(p)]
    while worklist:
        bid = worklist.pop()
        if bid in on_path or bid == target:
            continue
        on_path.add(bid)
        worklist.extend(p for p in cfg.predecessors_of(bid)
                        if domtree.is_reachable(p))
    ordered = [b for b in domtree.rpo_order if b in on_path]
    unguarded = [b for b in ordered if b not in facts.conditional_blocks]
    if unguarded:
        return GUARD_RULE.finding(
            description, False,
            f"block {_quote(unguarded)} on a path to block '{target}' "
            f"ends in an unconditional branch",
        )
    return GUARD_RULE.finding(
        description, True,
        f"every block on a path to block '{target}' ends in a conditional "
        f"branch: {_quote(ordered)}",
        ordered,
    )


# ---------------------------------------------------------------------------
#  Entry point
# ---------------------------------------------------------------------------

def evaluate_rules(
    cfg: ControlFlowGraph,
    domtree: DominatorTree,
    facts: ClassificationFacts,
    sensitive_block: str,
    policy: PolicyConfig,
) -> Tuple[RuleFinding, ...]:
    """Evaluate all four rules for the sensitive call in *sensitive_block*.

    Returns the findings in rule order.  An unreachable block fails
    every rule with a detail saying so.
    """
    desc = _descriptions(policy)
    if not domtree.is_reachable(sensitive_block):
        detail = (f"block '{sensitive_block}' is unreachable from entry "
                  f"'{cfg.entry}'; no evidence can be established")
        _log.debug("%s: %s", cfg.function_name, detail)
        return tuple(
            rule.finding(desc[rule.rule_id], False, detail) for rule in RULES
        )

    signature = _dominance_finding(
        SIGNATURE_RULE, desc[SIGNATURE_RULE.rule_id],
        f"call to {policy.signature_predicate}()",
        facts.signature_blocks, sensitive_block, domtree,
    )
    rollback = _rollback_finding(
        desc[ROLLBACK_RULE.rule_id], facts, sensitive_block, domtree, policy,
    )
    source = _dominance_finding(
        SOURCE_RULE, desc[SOURCE_RULE.rule_id],
        f"call to {policy.source_predicate}()",
        facts.source_blocks, sensitive_block, domtree,
    )
    if policy.guard_mode is GuardMode.ALL_PATHS:
        guard = _guard_all_paths(
            desc[GUARD_RULE.rule_id], cfg, domtree, facts, sensitive_block)
    else:
        guard = _guard_immediate(
            desc[GUARD_RULE.rule_id], cfg, facts, sensitive_block)
    return (signature, rollback, source, guard)
