# tests/test_ctrlflow_graph.py
"""
Tests for the CFG model: edge derivation, validation and rendering.
"""

import dataclasses

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
    IndexAccess,
    MalformedGraphError,
    Other,
    Ref,
    build_cfg,
    cfg_summary,
)
from tests.conftest import (
    inconsistent_cfg,
    secure_update_cfg,
    sibling_check_cfg,
)


class TestEdgeDerivation:

    def test_successors_follow_branch_targets(self, secure_cfg):
        assert secure_cfg.successors_of("entry") == ("reject.sig", "sig.ok")
        assert secure_cfg.successors_of("src.ok") == ("return",)
        assert secure_cfg.successors_of("return") == ()

    def test_predecessors_are_inverse_in_block_order(self, secure_cfg):
        assert secure_cfg.predecessors_of("return") == (
            "reject.sig", "reject.rollback", "reject.src", "src.ok",
        )
        assert secure_cfg.predecessors_of("entry") == ()

    def test_edges_mutually_consistent(self, secure_cfg):
        for block in secure_cfg:
            for succ in block.successors:
                assert block.id in secure_cfg.predecessors_of(succ)
            for pred in block.predecessors:
                assert block.id in secure_cfg.successors_of(pred)

    def test_duplicate_targets_collapse(self):
        cfg = build_cfg("f", "a", {
            "a": [Branch(True, ("b", "b"))],
            "b": [],
        })
        assert cfg.successors_of("a") == ("b",)
        assert cfg.predecessors_of("b") == ("a",)

    def test_terminator(self, secure_cfg):
        assert secure_cfg.terminator("entry") == Branch(True, ("reject.sig", "sig.ok"))
        assert secure_cfg.terminator("return") is None
        assert secure_cfg.block("entry").ends_in_conditional_branch
        assert not secure_cfg.block("src.ok").ends_in_conditional_branch


class TestValidation:

    def test_branch_must_terminate_block(self):
        with pytest.raises(MalformedGraphError) as info:
            build_cfg("f", "a", {
                "a": [Branch(False, ("b",)), Call("install", ())],
                "b": [],
            })
        assert "not the block terminator" in str(info.value)

    def test_unknown_branch_target(self):
        with pytest.raises(MalformedGraphError) as info:
            build_cfg("f", "a", {"a": [Branch(False, ("nowhere",))]})
        assert info.value.function_name == "f"
        assert "nowhere" in info.value.problems[0]

    def test_missing_entry(self):
        with pytest.raises(MalformedGraphError, match="entry block"):
            build_cfg("f", "start", {"a": [Other()]})

    def test_unconditional_branch_with_two_targets(self):
        with pytest.raises(MalformedGraphError, match="unconditional"):
            build_cfg("f", "a", {
                "a": [Branch(False, ("b", "c"))],
                "b": [],
                "c": [],
            })

    def test_branch_without_targets(self):
        with pytest.raises(MalformedGraphError, match="no targets"):
            build_cfg("f", "a", {"a": [Branch(True, ())]})

    def test_inconsistent_edge_sets(self):
        cfg = inconsistent_cfg()
        problems = cfg.problems()
        assert len(problems) == 1
        assert "does not list it as a predecessor" in problems[0]
        with pytest.raises(MalformedGraphError):
            cfg.validate()

    def test_successors_must_match_branch(self):
        cfg = ControlFlowGraph("f", "a", [
            BasicBlock("a", (Branch(False, ("b",)),), successors=("c",)),
            BasicBlock("b", (), predecessors=()),
            BasicBlock("c", (), predecessors=("a",)),
        ])
        assert any("disagree with branch targets" in p for p in cfg.problems())

    def test_successors_without_branch(self):
        cfg = ControlFlowGraph("f", "a", [
            BasicBlock("a", (Other(),), successors=("b",)),
            BasicBlock("b", (), predecessors=("a",)),
        ])
        assert cfg.problems() == [
            "block 'a': has successors but no terminating branch",
        ]

    def test_duplicate_block_ids(self):
        with pytest.raises(MalformedGraphError, match="duplicate block id"):
            ControlFlowGraph("f", "a", [BasicBlock("a"), BasicBlock("a")])

    def test_well_formed_graph_has_no_problems(self, secure_cfg):
        assert secure_cfg.problems() == []
        assert secure_cfg.validate() is secure_cfg


class TestImmutability:

    def test_blocks_mapping_is_read_only(self, secure_cfg):
        with pytest.raises(TypeError):
            secure_cfg.blocks["extra"] = BasicBlock("extra")

    def test_blocks_are_frozen(self, secure_cfg):
        with pytest.raises(dataclasses.FrozenInstanceError):
            secure_cfg.block("entry").successors = ()

    def test_operations_are_frozen(self):
        call = Call("install", (Ref("pkg"),))
        with pytest.raises(dataclasses.FrozenInstanceError):
            call.name = "other"


class TestQueries:

    def test_reachable_from(self, sibling_cfg):
        assert sibling_cfg.reachable_from("then") == {"then", "merge"}
        assert sibling_cfg.reachable_from("entry") == {
            "entry", "then", "else", "merge",
        }

    def test_all_paths(self, sibling_cfg):
        paths = sorted(sibling_cfg.all_paths("entry", "merge"))
        assert paths == [
            ["entry", "else", "merge"],
            ["entry", "then", "merge"],
        ]

    def test_container_protocol(self, sibling_cfg):
        assert len(sibling_cfg) == 4
        assert "merge" in sibling_cfg
        assert "nope" not in sibling_cfg
        assert [b.id for b in sibling_cfg] == ["entry", "then", "else", "merge"]


class TestRendering:

    @pytest.mark.parametrize("operand,text", [
        (Ref("current_version"), "current_version"),
        (Deref(Ref("current_version")), "*current_version"),
        (FieldAccess(Deref(Ref("pkg")), "version"), "pkg->version"),
        (FieldAccess(Ref("device_config"), "version"), "device_config.version"),
        (IndexAccess(Ref("slots"), 2), "slots[2]"),
        (Constant(5), "5"),
    ])
    def test_operand_str(self, operand, text):
        assert str(operand) == text

    def test_operation_str(self):
        cmp = Comparison("sle", FieldAccess(Deref(Ref("pkg")), "version"),
                         Deref(Ref("current_version")))
        assert str(cmp) == "pkg->version sle *current_version"
        assert str(Call("install", (Ref("pkg"),))) == "install(pkg)"
        assert str(Call(None)) == "<indirect>()"
        assert str(Branch(True, ("a", "b"))) == "br.cond a, b"

    def test_cfg_summary(self):
        text = cfg_summary(secure_update_cfg())
        lines = text.splitlines()
        assert lines[0].startswith("ControlFlowGraph(function='updateFirmware'")
        assert "blocks=8" in lines[0]
        assert lines[1].startswith("  entry [entry] ops=3")
        assert "succ=[reject.sig, sig.ok]" in lines[1]
        assert len(lines) == 9

    def test_to_dot(self):
        dot = sibling_check_cfg().to_dot()
        assert dot.startswith("digraph CFG {")
        assert dot.endswith("}")
        assert '"entry" -> "then" [color=green];' in dot
        assert '"then" -> "merge";' in dot
        assert 'label="updateFirmware";' in dot
