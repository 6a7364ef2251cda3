# fwpolicy_audit/ctrlflow_analysis.py
"""
Dominance analysis for fwpolicy-audit.

This module reasons about the *structure* of control flow: which blocks
every execution must pass through before reaching another block.  It
consumes the graph from ctrlflow_graph.py and never modifies it.

Principal analyses
------------------
- DominatorTree        immediate dominators, dominator tree, depth
- compute_dominators   convenience wrapper returning a computed tree

Usage example
-------------
    from fwpolicy_audit.ctrlflow_analysis import compute_dominators

    dt = compute_dominators(cfg)
    for bid in cfg.blocks:
        if dt.dominates(bid, install_block):
            print(f"{bid} dominates {install_block}")

References
----------
[1] Cooper, Harvey, Kennedy – "A Simple, Fast Dominance Algorithm", 2001.
[2] Aho, Lam, Sethi, Ullman – "Compilers: Principles, Techniques, &
    Tools", 2e, §9.6 (dominators).
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from typing import Deque, Dict, FrozenSet, List, Optional, Set, Tuple

from fwpolicy_audit.ctrlflow_graph import ControlFlowGraph

_log = logging.getLogger(__name__)


# ===================================================================
#  Dominator Tree
# ===================================================================

class DominatorTree:
    """
    Dominator tree of a :class:`ControlFlowGraph`.

    The implementation uses the Cooper–Harvey–Kennedy iterative
    algorithm [1]: blocks are visited in reverse postorder from the
    entry, and each block's immediate dominator is the nearest common
    ancestor of its already-processed predecessors.  Iteration stops
    once a full pass changes nothing.

    Attributes after .compute():
        idom              : Dict[block_id, block_id]  — immediate dominator
        rpo_order         : List[block_id]  — reachable blocks, reverse postorder
        unreachable       : FrozenSet[block_id]  — blocks with no path from entry
        dom_tree_children : Dict[block_id, List[block_id]]
        depth             : Dict[block_id, int]  — depth in the dominator tree
        iterations        : int  — passes until the fixed point was reached

    IMPORTANT — root convention
    ---------------------------
    The entry block's immediate dominator is set to *itself*
    (``self.idom[entry] == entry``).  Every walk up the idom chain
    **must** check for this self-loop to terminate.

    Unreachable blocks have no entry in ``idom``.  They dominate, and
    are dominated by, nothing but themselves.
    """

    def __init__(self, cfg: ControlFlowGraph):
        self.cfg = cfg
        self.idom: Dict[str, str] = {}
        self.rpo_order: List[str] = []
        self.unreachable: FrozenSet[str] = frozenset()
        self.dom_tree_children: Dict[str, List[str]] = defaultdict(list)
        self.depth: Dict[str, int] = {}
        self.iterations = 0
        self._rpo_num: Dict[str, int] = {}
        self._computed = False

    # ---- public API --------------------------------------------------

    def compute(self) -> "DominatorTree":
        """Compute immediate dominators, the tree and depths."""
        if self._computed:
            return self
        self._compute_rpo()
        self._compute_idom()
        self._build_dom_tree()
        self._compute_depth()
        self._computed = True
        _log.debug(
            "dominators for %s: %d reachable, %d unreachable, %d passes",
            self.cfg.function_name, len(self.rpo_order),
            len(self.unreachable), self.iterations,
        )
        return self

    def is_reachable(self, block_id: str) -> bool:
        self.compute()
        return block_id in self.idom

    def dominates(self, a_id: str, b_id: str) -> bool:
        """Return True if *a* dominates *b* (a dom b).

        A block dominates itself.  The entry dominates every reachable
        block.  We walk up the immediate-dominator chain from *b*; the
        walk terminates when we either find *a* or reach the root.
        """
        self.compute()
        if a_id == b_id:
            return True
        if a_id not in self.idom or b_id not in self.idom:
            return False
        # a can only dominate b if it comes first in reverse postorder
        if self._rpo_num[a_id] > self._rpo_num[b_id]:
            return False
        cur = b_id
        while True:
            if cur == a_id:
                return True
            parent = self.idom[cur]
            if parent == cur:
                return False
            cur = parent

    def strictly_dominates(self, a_id: str, b_id: str) -> bool:
        """Return True if *a* strictly dominates *b*: a dom b and a ≠ b."""
        return a_id != b_id and self.dominates(a_id, b_id)

    def all_dominators(self, block_id: str) -> Tuple[str, ...]:
        """Return *block_id* and every block dominating it, nearest first.

        An unreachable block is dominated only by itself.
        """
        self.compute()
        if block_id not in self.idom:
            return (block_id,)
        chain = [block_id]
        cur = block_id
        while self.idom[cur] != cur:
            cur = self.idom[cur]
            chain.append(cur)
        return tuple(chain)

    def common_dominator(self, a_id: str, b_id: str) -> Optional[str]:
        """Lowest common ancestor in the dominator tree."""
        self.compute()
        if a_id not in self.idom or b_id not in self.idom:
            return None
        return self._intersect(a_id, b_id)

    def subtree(self, root_id: str) -> Set[str]:
        """Return all block ids in the dominator sub-tree rooted at *root_id*."""
        self.compute()
        result: Set[str] = set()
        q: Deque[str] = deque([root_id])
        while q:
            bid = q.popleft()
            if bid in result:
                continue
            result.add(bid)
            q.extend(self.dom_tree_children.get(bid, []))
        return result

    # ---- internals: Cooper–Harvey–Kennedy iterative algorithm --------

    def _compute_rpo(self):
        entry = self.cfg.entry
        finish: List[str] = []
        vis: Set[str] = {entry}
        s: List[Tuple[str, int]] = [(entry, 0)]
        while s:
            bid, idx = s[-1]
            succs = self.cfg.successors_of(bid)
            if idx < len(succs):
                s[-1] = (bid, idx + 1)
                child = succs[idx]
                if child not in vis:
                    vis.add(child)
                    s.append((child, 0))
            else:
                s.pop()
                finish.append(bid)
        self.rpo_order = list(reversed(finish))
        self._rpo_num = {bid: i for i, bid in enumerate(self.rpo_order)}
        self.unreachable = frozenset(
            bid for bid in self.cfg.blocks if bid not in self._rpo_num
        )

    def _intersect(self, b1: str, b2: str) -> str:
        """Walk two fingers up the idom tree until they meet."""
        finger1, finger2 = b1, b2
        rpo = self._rpo_num
        while finger1 != finger2:
            while rpo[finger1] > rpo[finger2]:
                finger1 = self.idom[finger1]
            while rpo[finger2] > rpo[finger1]:
                finger2 = self.idom[finger2]
        return finger1

    def _compute_idom(self):
        entry = self.cfg.entry
        self.idom = {entry: entry}

        changed = True
        while changed:
            changed = False
            self.iterations += 1
            for bid in self.rpo_order:
                if bid == entry:
                    continue
                # only predecessors already given an idom take part;
                # unreachable predecessors never get one
                preds = [p for p in self.cfg.predecessors_of(bid)
                         if p in self.idom]
                if not preds:
                    continue
                new_idom = preds[0]
                for p in preds[1:]:
                    new_idom = self._intersect(p, new_idom)
                if self.idom.get(bid) != new_idom:
                    self.idom[bid] = new_idom
                    changed = True

    def _build_dom_tree(self):
        self.dom_tree_children = defaultdict(list)
        for bid in self.rpo_order:
            parent = self.idom[bid]
            if parent != bid:
                self.dom_tree_children[parent].append(bid)

    def _compute_depth(self):
        entry = self.cfg.entry
        self.depth = {entry: 0}
        queue: Deque[str] = deque([entry])
        while queue:
            bid = queue.popleft()
            d = self.depth[bid]
            for child in self.dom_tree_children.get(bid, []):
                if child not in self.depth:
                    self.depth[child] = d + 1
                    queue.append(child)


def compute_dominators(cfg: ControlFlowGraph) -> DominatorTree:
    """Return the computed :class:`DominatorTree` of *cfg*."""
    return DominatorTree(cfg).compute()
