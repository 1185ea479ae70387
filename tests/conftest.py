"""
Shared fixtures: raw export nodes and small conversation trees.
"""

import pytest

from branch_navigator.core import parse_mapping


def raw_node(node_id, parent=None, children=(), role=None, text=None, *,
             parts=None, content_type='text', recipient='all', create_time=None,
             metadata=None, **content_extra):
    """Build one node the way the conversation API exports it."""
    node = {"id": node_id, "parent": parent, "children": list(children), "message": None}
    if role is None and text is None and parts is None:
        return node

    if parts is None:
        parts = [text] if text is not None else []
    content = {"content_type": content_type, "parts": parts}
    content.update(content_extra)

    node["message"] = {
        "id": node_id,
        "author": {"role": role, "name": None, "metadata": {}},
        "create_time": create_time,
        "content": content,
        "status": "finished_successfully",
        "recipient": recipient,
        "metadata": metadata or {},
    }
    return node


@pytest.fixture(scope="session")
def anyio_backend():
    return "asyncio"


@pytest.fixture
def make_node():
    return raw_node


@pytest.fixture
def build_mapping():
    def build(*nodes):
        return parse_mapping({n["id"]: n for n in nodes})
    return build


@pytest.fixture
def e2e_raw():
    """root -> system -> [u1 (on page), u2 -> reply]"""
    nodes = [
        raw_node("root", None, ["sys"]),
        raw_node("sys", "root", ["u1", "u2"], role="system", text=""),
        raw_node("u1", "sys", [], role="user", text="First question", create_time=1700000000.0),
        raw_node("u2", "sys", ["reply"], role="user", text="Edited question", create_time=1700000100.0),
        raw_node("reply", "u2", [], role="assistant", text="An answer", create_time=1700000200.0),
    ]
    return {
        "title": "Branching test",
        "conversation_id": "conv-1",
        "current_node": "u1",
        "mapping": {n["id"]: n for n in nodes},
    }


@pytest.fixture
def e2e_mapping(e2e_raw):
    return parse_mapping(e2e_raw["mapping"])
