# fwpolicy_audit/classifier.py
"""
Instruction classification.

One pass over every block of a CFG, tagging the operations the policy
rules care about:

    SIGNATURE_CHECK       call to the signature predicate
    SOURCE_CHECK          call to the source-trust predicate
    SENSITIVE_CALL        call to the sensitive operation
    VERSION_CHECK         comparison with an operand reading version state
    COMPARISON            any other comparison
    CONDITIONAL_BRANCH    conditional block terminator
    UNCONDITIONAL_BRANCH  unconditional block terminator
    OTHER                 everything else, including indirect calls

A call is tagged once per policy role its name fills.  The CFG is not
modified.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Tuple

from fwpolicy_audit.ctrlflow_graph import (
    Branch,
    Call,
    Comparison,
    ControlFlowGraph,
    Operation,
)
from fwpolicy_audit.policy import PolicyConfig
from fwpolicy_audit.provenance import reads_version_state, trace_bound

_log = logging.getLogger(__name__)


class Category(enum.Enum):
    SIGNATURE_CHECK = "signature-check"
    SOURCE_CHECK = "source-check"
    SENSITIVE_CALL = "sensitive-call"
    VERSION_CHECK = "version-check"
    COMPARISON = "comparison"
    CONDITIONAL_BRANCH = "conditional-branch"
    UNCONDITIONAL_BRANCH = "unconditional-branch"
    OTHER = "other"


@dataclass(frozen=True)
class ClassifiedOp:
    block: str
    index: int
    category: Category
    operation: Operation


@dataclass(frozen=True)
class SensitiveSite:
    """One occurrence of the sensitive call."""

    block: str
    index: int
    call: Call


@dataclass(frozen=True)
class ClassificationFacts:
    """Everything the rule evaluator needs to know about the operations.

    Block tuples are ordered by first occurrence in block order and
    hold each block once.
    """

    signature_blocks: Tuple[str, ...]
    source_blocks: Tuple[str, ...]
    version_check_blocks: Tuple[str, ...]
    comparison_blocks: Tuple[str, ...]
    sensitive_sites: Tuple[SensitiveSite, ...]
    conditional_blocks: FrozenSet[str]
    tags: Tuple[ClassifiedOp, ...]

    def blocks_tagged(self, category: Category) -> Tuple[str, ...]:
        return _blocks_tagged(self.tags, category)

    def tags_in(self, block_id: str) -> Tuple[ClassifiedOp, ...]:
        return tuple(t for t in self.tags if t.block == block_id)


def _blocks_tagged(
    tags: Iterable[ClassifiedOp],
    category: Category,
) -> Tuple[str, ...]:
    seen: Dict[str, None] = {}
    for tag in tags:
        if tag.category is category:
            seen.setdefault(tag.block)
    return tuple(seen)


def _call_categories(call: Call, policy: PolicyConfig) -> List[Category]:
    if call.name is None:
        return [Category.OTHER]
    cats = []
    if call.name == policy.sensitive_operation:
        cats.append(Category.SENSITIVE_CALL)
    if call.name == policy.signature_predicate:
        cats.append(Category.SIGNATURE_CHECK)
    if call.name == policy.source_predicate:
        cats.append(Category.SOURCE_CHECK)
    return cats or [Category.OTHER]


def classify(cfg: ControlFlowGraph, policy: PolicyConfig) -> ClassificationFacts:
    """Classify every operation of *cfg* under *policy*."""
    bound = trace_bound(len(cfg), policy)
    tags: List[ClassifiedOp] = []
    sites: List[SensitiveSite] = []
    conditional = set()

    for block in cfg:
        for index, op in enumerate(block.operations):
            if isinstance(op, Call):
                cats = _call_categories(op, policy)
                if Category.SENSITIVE_CALL in cats:
                    sites.append(SensitiveSite(block.id, index, op))
            elif isinstance(op, Comparison):
                if any(reads_version_state(o, policy, bound)
                       for o in op.operands):
                    cats = [Category.VERSION_CHECK]
                else:
                    cats = [Category.COMPARISON]
            elif isinstance(op, Branch):
                if op.conditional:
                    cats = [Category.CONDITIONAL_BRANCH]
                    conditional.add(block.id)
                else:
                    cats = [Category.UNCONDITIONAL_BRANCH]
            else:
                cats = [Category.OTHER]
            for cat in cats:
                tags.append(ClassifiedOp(block.id, index, cat, op))
                if cat is not Category.OTHER:
                    _log.debug("%s: %s[%d] %s -> %s", cfg.function_name,
                               block.id, index, op, cat.value)

    return ClassificationFacts(
        signature_blocks=_blocks_tagged(tags, Category.SIGNATURE_CHECK),
        source_blocks=_blocks_tagged(tags, Category.SOURCE_CHECK),
        version_check_blocks=_blocks_tagged(tags, Category.VERSION_CHECK),
        comparison_blocks=_blocks_tagged(tags, Category.COMPARISON),
        sensitive_sites=tuple(sites),
        conditional_blocks=frozenset(conditional),
        tags=tuple(tags),
    )
