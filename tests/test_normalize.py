"""
Tests for mapping normalization: pruning, promotion and root selection.
"""

import copy
import logging

import pytest

from branch_navigator.core import VIRTUAL_ROOT_ID, MalformedTreeError
from branch_navigator.normalize import (
    NO_TEXT_LABEL,
    ROOT_LABEL,
    find_raw_root,
    is_valid_node,
    normalize,
)


def _ids(tree):
    return [n.id for n in tree.nodes]


def _edges(tree):
    return [(e.source, e.target) for e in tree.edges]


class TestEndToEnd:
    def test_system_parent_becomes_display_root(self, e2e_mapping):
        tree = normalize(e2e_mapping)

        assert tree.root.id == "sys"
        assert tree.root.label == ROOT_LABEL
        assert tree.root.parent_id is None
        assert tree.root.child_ids == ["u1", "u2"]
        assert _ids(tree) == ["sys", "u1", "u2", "reply"]
        assert _edges(tree) == [("sys", "u1"), ("sys", "u2"), ("u2", "reply")]

    def test_display_fields(self, e2e_mapping):
        tree = normalize(e2e_mapping)
        reply = tree.get("reply")

        assert reply.parent_id == "u2"
        assert reply.label == "An answer"
        assert reply.role == "assistant"
        assert reply.timestamp == 1700000200.0
        assert reply.content_type == "text"
        assert reply.hidden is True
        assert reply.visually_hidden is False
        assert reply.degraded is False

    def test_idempotent(self, e2e_mapping):
        first = normalize(e2e_mapping)
        second = normalize(e2e_mapping)

        assert _ids(first) == _ids(second)
        assert _edges(first) == _edges(second)
        assert [n.label for n in first.nodes] == [n.label for n in second.nodes]

    def test_input_is_not_mutated(self, e2e_mapping):
        before = copy.deepcopy(e2e_mapping)
        normalize(e2e_mapping)
        assert e2e_mapping == before

    def test_empty_mapping(self):
        tree = normalize({})
        assert tree.root is None
        assert tree.nodes == []
        assert tree.edges == []


class TestPruning:
    def test_invalid_chain_is_skipped(self, make_node, build_mapping):
        mapping = build_mapping(
            make_node("root", None, ["sys"]),
            make_node("sys", "root", ["u"], role="system", text=""),
            make_node("u", "sys", ["call"], role="user", text="Search the web"),
            make_node("call", "u", ["result"], role="assistant", text="search('x')", recipient="browser"),
            make_node("result", "call", ["a"], role="tool", text="results"),
            make_node("a", "result", [], role="assistant", text="Here is what I found"),
        )

        tree = normalize(mapping)

        assert _ids(tree) == ["sys", "u", "a"]
        assert tree.get("u").child_ids == ["a"]
        assert tree.get("a").parent_id == "u"
        for pruned in ("call", "result"):
            assert pruned not in tree

    def test_promotion_preserves_sibling_order(self, make_node, build_mapping):
        mapping = build_mapping(
            make_node("root", None, ["p"]),
            make_node("p", "root", ["a", "b", "c"], role="system", text=""),
            make_node("a", "p", [], role="user", text="A"),
            make_node("b", "p", ["b2"], role="assistant", text=""),
            make_node("b2", "b", [], role="user", text="B2"),
            make_node("c", "p", [], role="user", text="C"),
        )

        tree = normalize(mapping)

        assert tree.root.id == "p"
        assert tree.root.child_ids == ["a", "b2", "c"]
        assert tree.get("b2").parent_id == "p"
        assert "b" not in tree

    def test_promotion_follows_first_child_only(self, make_node, build_mapping):
        mapping = build_mapping(
            make_node("root", None, ["u"]),
            make_node("u", "root", ["x"], role="user", text="Hi"),
            make_node("x", "u", ["dead", "alive"], role="tool", text="tool output"),
            make_node("dead", "x", [], role="assistant", text=""),
            make_node("alive", "x", [], role="assistant", text="Valid but not first"),
        )

        tree = normalize(mapping)

        assert tree.get("u").child_ids == []
        assert "alive" not in tree

    def test_whitespace_reply_keeps_every_branch(self, make_node, build_mapping):
        mapping = build_mapping(
            make_node("root", None, ["u1"]),
            make_node("u1", "root", ["a1"], role="user", text="hi"),
            make_node("a1", "u1", ["f1", "f2"], role="assistant", text="\n"),
            make_node("f1", "a1", [], role="user", text="First follow-up"),
            make_node("f2", "a1", [], role="user", text="Second follow-up"),
        )

        tree = normalize(mapping)

        assert _ids(tree) == ["root", "u1", "a1", "f1", "f2"]
        assert tree.get("a1").child_ids == ["f1", "f2"]

    def test_null_first_part_is_pruned(self, make_node, build_mapping):
        mapping = build_mapping(
            make_node("root", None, ["u"]),
            make_node("u", "root", ["a"], role="user", text="Hi"),
            make_node("a", "u", [], role="assistant", parts=[None, "late text"]),
        )

        assert "a" not in normalize(mapping)

    def test_missing_child_is_skipped(self, make_node, build_mapping, caplog):
        mapping = build_mapping(
            make_node("root", None, ["u"]),
            make_node("u", "root", ["ghost", "a"], role="user", text="Hi"),
            make_node("a", "u", [], role="assistant", text="Hello"),
        )

        with caplog.at_level(logging.WARNING, logger="branch_navigator.normalize"):
            tree = normalize(mapping)

        assert tree.get("u").child_ids == ["a"]
        assert "ghost" in caplog.text

    def test_is_valid_node(self, e2e_mapping):
        assert is_valid_node(e2e_mapping["u1"]) is True
        assert is_valid_node(e2e_mapping["sys"]) is False
        assert is_valid_node(e2e_mapping["root"]) is False
        assert is_valid_node(None) is False


class TestRootSelection:
    def test_find_raw_root(self, e2e_mapping):
        assert find_raw_root(e2e_mapping) == "root"

    def test_find_raw_root_rejects_multiple(self, make_node, build_mapping):
        mapping = build_mapping(make_node("a"), make_node("b"))
        with pytest.raises(MalformedTreeError) as exc:
            find_raw_root(mapping)
        assert exc.value.candidates == ["a", "b"]

    def test_multiple_roots_fall_back_to_virtual_root(self, make_node, build_mapping):
        mapping = build_mapping(
            make_node("u1", None, ["a1"], role="user", text="One"),
            make_node("a1", "u1", [], role="assistant", text="Reply"),
            make_node("u2", None, [], role="user", text="Two"),
        )

        tree = normalize(mapping)

        assert tree.root.id == VIRTUAL_ROOT_ID
        assert tree.root.degraded is True
        assert tree.root.child_ids == ["u1", "u2"]
        assert _ids(tree) == [VIRTUAL_ROOT_ID, "u1", "a1", "u2"]

    def test_orphans_join_virtual_root(self, make_node, build_mapping):
        mapping = build_mapping(
            make_node("u1", None, [], role="user", text="One"),
            make_node("u2", "missing-parent", [], role="user", text="Orphan"),
            make_node("u3", None, [], role="user", text="Three"),
        )

        tree = normalize(mapping)

        assert tree.root.child_ids == ["u1", "u2", "u3"]

    def test_cycle_without_root_is_not_fatal(self, make_node, build_mapping):
        mapping = build_mapping(
            make_node("a", "b", ["b"], role="user", text="A"),
            make_node("b", "a", ["a"], role="assistant", text="B"),
        )

        tree = normalize(mapping)

        assert tree.root.id == VIRTUAL_ROOT_ID
        assert tree.root.child_ids == []

    def test_no_user_message_gives_childless_root(self, make_node, build_mapping):
        mapping = build_mapping(
            make_node("root", None, ["sys"]),
            make_node("sys", "root", [], role="system", text=""),
        )

        tree = normalize(mapping)

        assert tree.root.id == "root"
        assert tree.root.child_ids == []
        assert _ids(tree) == ["root"]

    def test_first_user_turn_in_breadth_first_order_wins(self, make_node, build_mapping):
        mapping = build_mapping(
            make_node("root", None, ["sys"]),
            make_node("sys", "root", ["ctx", "u"], role="system", text=""),
            make_node("ctx", "sys", ["deep"], role="assistant", text="", recipient="all"),
            make_node("deep", "ctx", [], role="user", text="Deeper"),
            make_node("u", "sys", [], role="user", text="Shallow"),
        )

        tree = normalize(mapping)

        # "u" is found before "deep", so sys stays the root and keeps both slots
        assert tree.root.id == "sys"
        assert tree.root.child_ids == ["deep", "u"]

    def test_user_root_label(self, make_node, build_mapping):
        mapping = build_mapping(
            make_node("root", None, ["p"]),
            make_node("p", "root", ["u"], role="assistant", text="Welcome back"),
            make_node("u", "p", [], role="user", text="Hi"),
        )

        tree = normalize(mapping)

        assert tree.root.id == "p"
        assert tree.root.label == "Welcome back"
        assert tree.root.role == "assistant"


class TestLabels:
    def test_multimodal_uses_first_string_part(self, make_node, build_mapping):
        pointer = {"content_type": "image_asset_pointer", "asset_pointer": "file-service://img"}
        mapping = build_mapping(
            make_node("root", None, ["u"]),
            make_node("u", "root", ["img"], role="user", text="Look"),
            make_node("img", "u", [], role="user", parts=[pointer, "What is this?"],
                      content_type="multimodal_text"),
        )

        tree = normalize(mapping)

        assert tree.get("img").label == "What is this?"
        assert tree.get("img").content_type == "multimodal_text"

    def test_image_only_gets_fallback_label(self, make_node, build_mapping):
        pointer = {"content_type": "image_asset_pointer", "asset_pointer": "file-service://img"}
        mapping = build_mapping(
            make_node("root", None, ["u"]),
            make_node("u", "root", ["img"], role="user", text="Look"),
            make_node("img", "u", [], role="user", parts=[pointer], content_type="multimodal_text"),
        )

        tree = normalize(mapping)

        assert tree.get("img").label == NO_TEXT_LABEL

    def test_custom_instructions_are_visually_hidden(self, make_node, build_mapping):
        mapping = build_mapping(
            make_node("root", None, ["sys"]),
            make_node("sys", "root", ["ctx", "u"], role="system", text=""),
            make_node("ctx", "sys", [], role="user", parts=[],
                      content_type="user_editable_context", user_instructions="Be brief"),
            make_node("u", "sys", [], role="user", text="Hi"),
        )

        tree = normalize(mapping)
        ctx = tree.get("ctx")

        assert ctx is not None
        assert ctx.label == "Be brief"
        assert ctx.visually_hidden is True
        assert ctx.hidden is True
        assert tree.get("u").visually_hidden is False

    def test_hidden_from_conversation_metadata(self, make_node, build_mapping):
        mapping = build_mapping(
            make_node("root", None, ["u"]),
            make_node("u", "root", ["a"], role="user", text="Hi"),
            make_node("a", "u", [], role="assistant", text="Note",
                      metadata={"is_visually_hidden_from_conversation": True}),
        )

        assert normalize(mapping).get("a").visually_hidden is True

    def test_message_without_author_is_degraded(self, make_node, build_mapping):
        broken = make_node("a", "u", [], role="assistant", text="Orphaned text")
        del broken["message"]["author"]
        mapping = build_mapping(
            make_node("root", None, ["u"]),
            make_node("u", "root", ["a"], role="user", text="Hi"),
            broken,
        )

        tree = normalize(mapping)
        node = tree.get("a")

        assert node.degraded is True
        assert node.role is None
        assert node.label == "Message without author [ID: a]"

    def test_label_truncation(self, make_node, build_mapping):
        mapping = build_mapping(
            make_node("root", None, ["u"]),
            make_node("u", "root", [], role="user", text="x" * 40),
        )

        tree = normalize(mapping, label_max_length=10)

        assert tree.get("u").label == "x" * 10 + "..."


def test_deep_conversation(make_node, build_mapping):
    nodes = [make_node("root", None, ["n0"])]
    depth = 3000
    for i in range(depth):
        role = "user" if i % 2 == 0 else "assistant"
        children = [f"n{i + 1}"] if i + 1 < depth else []
        parent = "root" if i == 0 else f"n{i - 1}"
        nodes.append(make_node(f"n{i}", parent, children, role=role, text=f"turn {i}"))

    tree = normalize(build_mapping(*nodes))

    assert tree.root.id == "root"
    assert len(tree) == depth + 1
    assert tree.nodes[-1].id == f"n{depth - 1}"
