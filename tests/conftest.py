# tests/conftest.py
"""
Shared CFG factories and fixtures.

The update routines below are hand-lowered from the reference firmware
updater: ``secure_update_cfg`` mirrors the version that checks the
signature, rejects rollback and validates the source before calling
``install``; ``insecure_update_cfg`` calls ``install`` straight away.
"""

import random
from typing import Dict, List, Sequence, Set

import pytest

from fwpolicy_audit import (
    BasicBlock,
    Branch,
    Call,
    Comparison,
    Constant,
    ControlFlowGraph,
    Deref,
    FieldAccess,
    Other,
    Ref,
    build_cfg,
)

PKG = Ref("pkg")
PKG_VERSION = FieldAccess(Deref(PKG), "version")
CURRENT_VERSION = Deref(Ref("current_version"))


def _log(msg: str) -> Call:
    return Call("printf", (Constant(msg),))


def _ret(target: str = "return") -> Branch:
    return Branch(False, (target,))


# ── Update routines ──────────────────────────────────────────────

def secure_update_cfg(name: str = "updateFirmware") -> ControlFlowGraph:
    return build_cfg(name, "entry", {
        "entry": [
            Call("verifySignature", (PKG,)),
            Comparison("eq", Ref("call"), Constant(0)),
            Branch(True, ("reject.sig", "sig.ok")),
        ],
        "reject.sig": [_log("[LOG] Update rejected: invalid signature"), _ret()],
        "sig.ok": [
            Comparison("sle", PKG_VERSION, CURRENT_VERSION),
            Branch(True, ("reject.rollback", "ver.ok")),
        ],
        "reject.rollback": [_log("[LOG] Update rejected: rollback detected"), _ret()],
        "ver.ok": [
            Call("sourceTrusted", (PKG,)),
            Comparison("eq", Ref("call1"), Constant(0)),
            Branch(True, ("reject.src", "src.ok")),
        ],
        "reject.src": [_log("[LOG] Update rejected: untrusted source"), _ret()],
        "src.ok": [
            _log("[LOG] Update accepted"),
            Call("install", (PKG,)),
            _ret(),
        ],
        "return": [Other("ret void")],
    })


def insecure_update_cfg(name: str = "updateFirmware") -> ControlFlowGraph:
    return build_cfg(name, "entry", {
        "entry": [Call("install", (PKG,)), Other("ret void")],
    })


def sibling_check_cfg(name: str = "updateFirmware") -> ControlFlowGraph:
    """Signature checked in one arm of an if/else, install after the merge."""
    return build_cfg(name, "entry", {
        "entry": [
            Call("getMode", ()),
            Comparison("ne", Ref("mode"), Constant(0)),
            Branch(True, ("then", "else")),
        ],
        "then": [Call("verifySignature", (PKG,)), Branch(False, ("merge",))],
        "else": [Branch(False, ("merge",))],
        "merge": [Call("install", (PKG,)), Other("ret void")],
    })


def shallow_guard_cfg(name: str = "updateFirmware") -> ControlFlowGraph:
    """Guarded by its direct predecessor, unconditional one hop further up."""
    return build_cfg(name, "entry", {
        "entry": [
            Call("verifySignature", (PKG,)),
            Call("sourceTrusted", (PKG,)),
            Branch(False, ("check",)),
        ],
        "check": [
            Comparison("sgt", PKG_VERSION,
                       FieldAccess(Ref("device_config"), "version")),
            Branch(True, ("do.install", "exit")),
        ],
        "do.install": [Call("install", (PKG,)), Branch(False, ("exit",))],
        "exit": [Other("ret void")],
    })


def unreachable_install_cfg(name: str = "updateFirmware") -> ControlFlowGraph:
    return build_cfg(name, "entry", {
        "entry": [Call("verifySignature", (PKG,)), Other("ret void")],
        "orphan": [Call("install", (PKG,)), Branch(False, ("exit",))],
        "exit": [Other("ret void")],
    })


def loop_cfg(name: str = "retryUpdate") -> ControlFlowGraph:
    return build_cfg(name, "entry", {
        "entry": [Branch(False, ("header",))],
        "header": [
            Comparison("slt", Ref("i"), Constant(3)),
            Branch(True, ("body", "exit")),
        ],
        "body": [Call("fetchChunk", (Ref("i"),)), Branch(False, ("header",))],
        "exit": [Other("ret void")],
    })


def irreducible_cfg(name: str = "tangled") -> ControlFlowGraph:
    return build_cfg(name, "entry", {
        "entry": [Branch(True, ("a", "b"))],
        "a": [Branch(True, ("b", "exit"))],
        "b": [Branch(False, ("a",))],
        "exit": [Other("ret void")],
    })


def inconsistent_cfg(name: str = "broken") -> ControlFlowGraph:
    """Hand-assembled graph whose edge sets disagree."""
    return ControlFlowGraph(name, "a", [
        BasicBlock("a", (Call("install", (PKG,)), Branch(False, ("b",))),
                   successors=("b",)),
        BasicBlock("b", (Other("ret void"),)),
    ])


def random_cfg(seed: int, nblocks: int = 9) -> ControlFlowGraph:
    """A random (possibly irreducible, possibly partly unreachable) CFG."""
    rng = random.Random(seed)
    ids = [f"b{i}" for i in range(nblocks)]
    blocks: Dict[str, List] = {}
    for bid in ids:
        fanout = rng.choice((0, 1, 1, 2, 2, 3))
        targets = rng.sample(ids, fanout) if fanout else []
        if not targets:
            blocks[bid] = [Other("ret")]
        elif len(targets) == 1:
            blocks[bid] = [Branch(False, tuple(targets))]
        else:
            blocks[bid] = [Branch(True, tuple(targets))]
    return build_cfg(f"random{seed}", "b0", blocks)


def reachable_without(cfg: ControlFlowGraph, removed: str) -> Set[str]:
    """Blocks reachable from entry when *removed* is deleted from the graph."""
    if cfg.entry == removed:
        return set()
    seen = {cfg.entry}
    stack = [cfg.entry]
    while stack:
        bid = stack.pop()
        for succ in cfg.successors_of(bid):
            if succ != removed and succ not in seen:
                seen.add(succ)
                stack.append(succ)
    return seen


ALL_SHAPES: Sequence = (
    secure_update_cfg,
    insecure_update_cfg,
    sibling_check_cfg,
    shallow_guard_cfg,
    unreachable_install_cfg,
    loop_cfg,
    irreducible_cfg,
)


# ── Fixtures ─────────────────────────────────────────────────────

@pytest.fixture
def secure_cfg():
    return secure_update_cfg()


@pytest.fixture
def insecure_cfg():
    return insecure_update_cfg()


@pytest.fixture
def sibling_cfg():
    return sibling_check_cfg()


@pytest.fixture
def shallow_cfg():
    return shallow_guard_cfg()


@pytest.fixture
def unreachable_cfg():
    return unreachable_install_cfg()
