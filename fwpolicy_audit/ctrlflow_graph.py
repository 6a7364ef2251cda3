"""
fwpolicy_audit.ctrlflow_graph
=============================

The control-flow graph abstraction consumed by the policy engine.

A CFG describes one function as a set of *basic blocks* (straight-line
sequences of operations) connected by the targets of each block's
terminating branch.  The front end that lowers source or IR into this
shape lives outside this package; everything here takes an already
built graph and treats it as read-only.

Public API
----------
    Ref, Deref, FieldAccess, IndexAccess, Constant
                     - operand reference trees (how a value was produced)
    Call, Comparison, Branch, Other
                     - the closed set of operation kinds
    BasicBlock       - a single basic block
    ControlFlowGraph - the control flow graph for one function
    build_cfg        - build a validated CFG from block id -> operations
    cfg_summary      - multi-line text dump of a CFG

Typical usage::

    from fwpolicy_audit.ctrlflow_graph import (
        Branch, Call, Ref, build_cfg, cfg_summary,
    )

    cfg = build_cfg("updateFirmware", "entry", {
        "entry":   [Call("verifySignature", (Ref("pkg"),)),
                    Branch(True, ("ok", "reject"))],
        "ok":      [Call("install", (Ref("pkg"),)),
                    Branch(False, ("exit",))],
        "reject":  [Branch(False, ("exit",))],
        "exit":    [],
    })
    print(cfg_summary(cfg))

Implementation notes
--------------------
* Successors are derived from the block's terminating ``Branch`` in
  target order (duplicates collapsed); predecessors are the exact
  inverse, ordered by block insertion order.
* A block with no terminating branch has no successors (it returns).
* Graphs are immutable once built.  ``validate()`` is run by
  ``build_cfg`` and may be called on hand-assembled graphs.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from types import MappingProxyType
from typing import (
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Set,
    Tuple,
    Union,
)

from fwpolicy_audit.errors import MalformedGraphError

# ---------------------------------------------------------------------------
# Operands
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Ref:
    """Direct reference to a named cell (global, parameter or local)."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Deref:
    """A load through the pointer produced by *base*."""

    base: "Operand"

    def __str__(self) -> str:
        return f"*{self.base}"


@dataclass(frozen=True)
class FieldAccess:
    """Access of member *field* on the record produced by *base*."""

    base: "Operand"
    field: str

    def __str__(self) -> str:
        if isinstance(self.base, Deref):
            return f"{self.base.base}->{self.field}"
        return f"{self.base}.{self.field}"


@dataclass(frozen=True)
class IndexAccess:
    """Element *index* of the array produced by *base*."""

    base: "Operand"
    index: Union[int, str] = 0

    def __str__(self) -> str:
        return f"{self.base}[{self.index}]"


@dataclass(frozen=True)
class Constant:
    """A literal value."""

    value: Union[int, str, None] = None

    def __str__(self) -> str:
        return repr(self.value)


Operand = Union[Ref, Deref, FieldAccess, IndexAccess, Constant]

# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Call:
    """A call to *name*.  ``name is None`` marks an unresolved/indirect call."""

    name: Optional[str]
    args: Tuple[Operand, ...] = ()

    def __str__(self) -> str:
        callee = self.name if self.name is not None else "<indirect>"
        return f"{callee}({', '.join(str(a) for a in self.args)})"


@dataclass(frozen=True)
class Comparison:
    """A relational comparison ``left <predicate> right``."""

    predicate: str
    left: Operand
    right: Operand

    @property
    def operands(self) -> Tuple[Operand, Operand]:
        return (self.left, self.right)

    def __str__(self) -> str:
        return f"{self.left} {self.predicate} {self.right}"


@dataclass(frozen=True)
class Branch:
    """Block terminator.  *targets* are block ids in branch order."""

    conditional: bool
    targets: Tuple[str, ...]

    def __str__(self) -> str:
        kind = "br.cond" if self.conditional else "br"
        return f"{kind} {', '.join(self.targets)}"


@dataclass(frozen=True)
class Other:
    """Any operation the policy engine does not care about."""

    text: str = ""

    def __str__(self) -> str:
        return self.text or "<other>"


Operation = Union[Call, Comparison, Branch, Other]


# ---------------------------------------------------------------------------
# BasicBlock
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BasicBlock:
    """A basic block in the CFG.

    Attributes
    ----------
    id : str
        Stable name, unique within the function.
    operations : tuple[Operation, ...]
        Operations in program order.  Only the last one may be a
        ``Branch``.
    successors : tuple[str, ...]
        Ids of blocks control may pass to.
    predecessors : tuple[str, ...]
        Ids of blocks control may come from.
    """

    id: str
    operations: Tuple[Operation, ...] = ()
    successors: Tuple[str, ...] = ()
    predecessors: Tuple[str, ...] = ()

    @property
    def terminator(self) -> Optional[Branch]:
        """The terminating ``Branch``, or ``None`` if the block returns."""
        if self.operations and isinstance(self.operations[-1], Branch):
            return self.operations[-1]
        return None

    @property
    def ends_in_conditional_branch(self) -> bool:
        term = self.terminator
        return term is not None and term.conditional

    def label(self) -> str:
        """Return a compact, human-readable label for this block."""
        if not self.operations:
            return "[empty]"
        parts = [str(op) for op in self.operations[:4]]
        s = "; ".join(parts)
        if len(self.operations) > 4:
            s += "; …"
        return s

    def __repr__(self) -> str:
        return (
            f"BasicBlock(id={self.id!r}, nops={len(self.operations)}, "
            f"succ={list(self.successors)})"
        )


# ---------------------------------------------------------------------------
# ControlFlowGraph
# ---------------------------------------------------------------------------

class ControlFlowGraph:
    """Intraprocedural control flow graph for a single function.

    Attributes
    ----------
    function_name : str
    entry : str
        Id of the entry block.
    blocks : Mapping[str, BasicBlock]
        All basic blocks keyed by id, in insertion order.
    """

    def __init__(
        self,
        function_name: str,
        entry: str,
        blocks: Iterable[BasicBlock],
    ) -> None:
        self.function_name = function_name
        self.entry = entry
        table: "OrderedDict[str, BasicBlock]" = OrderedDict()
        duplicates: List[str] = []
        for block in blocks:
            if block.id in table:
                duplicates.append(block.id)
                continue
            table[block.id] = block
        if duplicates:
            raise MalformedGraphError(
                function_name,
                [f"duplicate block id {d!r}" for d in duplicates],
            )
        self._blocks = table
        self.blocks: Mapping[str, BasicBlock] = MappingProxyType(table)

    # ----- queries ----------------------------------------------------------

    def block(self, block_id: str) -> BasicBlock:
        return self._blocks[block_id]

    def successors_of(self, block_id: str) -> Tuple[str, ...]:
        return self._blocks[block_id].successors

    def predecessors_of(self, block_id: str) -> Tuple[str, ...]:
        return self._blocks[block_id].predecessors

    def terminator(self, block_id: str) -> Optional[Branch]:
        return self._blocks[block_id].terminator

    def reachable_from(self, start: str) -> Set[str]:
        """Return the set of block ids reachable from *start* (DFS)."""
        visited: Set[str] = set()
        worklist = [start]
        while worklist:
            bid = worklist.pop()
            if bid in visited or bid not in self._blocks:
                continue
            visited.add(bid)
            worklist.extend(self._blocks[bid].successors)
        return visited

    def all_paths(
        self,
        src: str,
        dst: str,
        max_depth: int = 200,
    ) -> Iterator[List[str]]:
        """Yield all simple paths from *src* to *dst* (DFS, bounded)."""
        stack: List[Tuple[str, List[str], Set[str]]] = [(src, [src], {src})]
        while stack:
            current, path, visited = stack.pop()
            if current == dst:
                yield list(path)
                continue
            if len(path) >= max_depth:
                continue
            for nxt in reversed(self._blocks[current].successors):
                if nxt not in visited:
                    stack.append((nxt, path + [nxt], visited | {nxt}))

    # ----- validation -------------------------------------------------------

    def problems(self) -> List[str]:
        """Return every structural defect of this graph (empty if sound)."""
        found: List[str] = []
        if not self.entry or self.entry not in self._blocks:
            found.append(f"entry block {self.entry!r} is not defined")
        for block in self._blocks.values():
            found.extend(_block_problems(block, self._blocks))
        return found

    def validate(self) -> "ControlFlowGraph":
        """Raise :class:`MalformedGraphError` if the graph is unsound."""
        found = self.problems()
        if found:
            raise MalformedGraphError(self.function_name, found)
        return self

    # ----- serialisation helpers --------------------------------------------

    def to_dot(self, title: Optional[str] = None) -> str:
        """Return a Graphviz DOT representation of this CFG."""
        lines = ["digraph CFG {"]
        lines.append(f'  label="{title or self.function_name}";')
        lines.append("  node [shape=box, fontname=monospace, fontsize=10];")
        for block in self._blocks.values():
            lbl = block.label().replace('"', '\\"').replace("\n", "\\n")
            color = ""
            if block.id == self.entry:
                color = ', style=filled, fillcolor="#ccffcc"'
            lines.append(f'  "{block.id}" [label="{block.id}\\n{lbl}"{color}];')
        for block in self._blocks.values():
            style = ""
            if block.ends_in_conditional_branch:
                style = " [color=green]"
            for succ in block.successors:
                lines.append(f'  "{block.id}" -> "{succ}"{style};')
        lines.append("}")
        return "\n".join(lines)

    # ----- container protocol -----------------------------------------------

    def __len__(self) -> int:
        return len(self._blocks)

    def __iter__(self) -> Iterator[BasicBlock]:
        return iter(self._blocks.values())

    def __contains__(self, block_id: object) -> bool:
        return block_id in self._blocks

    def __repr__(self) -> str:
        nedges = sum(len(b.successors) for b in self._blocks.values())
        return (
            f"ControlFlowGraph(function={self.function_name!r}, "
            f"blocks={len(self._blocks)}, edges={nedges})"
        )


def _block_problems(
    block: BasicBlock,
    table: Mapping[str, BasicBlock],
) -> List[str]:
    found: List[str] = []
    for pos, op in enumerate(block.operations[:-1]):
        if isinstance(op, Branch):
            found.append(
                f"block {block.id!r}: branch at position {pos} "
                f"is not the block terminator"
            )
    term = block.terminator
    if term is not None:
        if not term.targets:
            found.append(f"block {block.id!r}: branch has no targets")
        elif not term.conditional and len(set(term.targets)) != 1:
            found.append(
                f"block {block.id!r}: unconditional branch has "
                f"{len(term.targets)} targets"
            )
        if set(term.targets) != set(block.successors):
            found.append(
                f"block {block.id!r}: successors {list(block.successors)} "
                f"disagree with branch targets {list(term.targets)}"
            )
    elif block.successors:
        found.append(
            f"block {block.id!r}: has successors but no terminating branch"
        )
    for succ in block.successors:
        if succ not in table:
            found.append(f"block {block.id!r}: unknown successor {succ!r}")
        elif block.id not in table[succ].predecessors:
            found.append(
                f"block {block.id!r} lists successor {succ!r} which does "
                f"not list it as a predecessor"
            )
    for pred in block.predecessors:
        if pred not in table:
            found.append(f"block {block.id!r}: unknown predecessor {pred!r}")
        elif block.id not in table[pred].successors:
            found.append(
                f"block {block.id!r} lists predecessor {pred!r} which does "
                f"not list it as a successor"
            )
    return found


# ===========================================================================
# PUBLIC API
# ===========================================================================

def build_cfg(
    function_name: str,
    entry: str,
    blocks: Mapping[str, Sequence[Operation]],
) -> ControlFlowGraph:
    """Build a validated :class:`ControlFlowGraph`.

    Parameters
    ----------
    function_name : str
        Name of the analysed function.
    entry : str
        Id of the entry block; must be a key of *blocks*.
    blocks : Mapping[str, Sequence[Operation]]
        Block id -> operations in program order.  Insertion order is
        kept and used for every deterministic iteration later on.

    Raises
    ------
    MalformedGraphError
        If a branch is not the last operation of its block, a branch
        names an unknown block, or *entry* is not a block.
    """
    succs: Dict[str, Tuple[str, ...]] = {}
    preds: Dict[str, List[str]] = {bid: [] for bid in blocks}
    unknown: List[str] = []
    for bid, ops in blocks.items():
        targets: Tuple[str, ...] = ()
        if ops and isinstance(ops[-1], Branch):
            targets = tuple(OrderedDict.fromkeys(ops[-1].targets))
        for t in targets:
            if t in preds:
                preds[t].append(bid)
            else:
                unknown.append(f"block {bid!r}: branch to unknown block {t!r}")
        succs[bid] = targets
    if unknown:
        raise MalformedGraphError(function_name, unknown)

    cfg = ControlFlowGraph(
        function_name,
        entry,
        (
            BasicBlock(
                id=bid,
                operations=tuple(ops),
                successors=succs[bid],
                predecessors=tuple(preds[bid]),
            )
            for bid, ops in blocks.items()
        ),
    )
    return cfg.validate()


# ---------------------------------------------------------------------------
# Convenience: print a summary
# ---------------------------------------------------------------------------

def cfg_summary(cfg: ControlFlowGraph) -> str:
    """Return a multi-line human-readable summary of *cfg*."""
    lines = [repr(cfg)]
    for block in cfg:
        tag = " [entry]" if block.id == cfg.entry else ""
        lines.append(
            f"  {block.id}{tag} "
            f"ops={len(block.operations)}  "
            f"succ=[{', '.join(block.successors)}]  "
            f"pred=[{', '.join(block.predecessors)}]"
        )
    return "\n".join(lines)
