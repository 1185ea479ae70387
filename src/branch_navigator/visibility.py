"""
The boundary to the visibility oracle.

The oracle answers, for each node id, whether the node is absent from the
live page. The polarity is fixed here: a HiddenFlag of True means "not
present", so the node is hidden. Nothing outside this module should
interpret raw oracle booleans.
"""

import logging
from typing import Awaitable, Callable, NewType, Optional, Sequence

from .core import Conversation, DisplayNode, VisibilityError

logger = logging.getLogger(__name__)

HiddenFlag = NewType("HiddenFlag", bool)

VisibilityOracle = Callable[[list[str]], Awaitable[Sequence[HiddenFlag]]]


def apply_visibility(nodes: Sequence[DisplayNode], flags: Sequence[HiddenFlag]) -> int:
    """
    Store oracle results on the nodes, aligned by position.

    The whole response is validated before any node is touched, so a bad
    response leaves the previous state intact.

    Returns:
        number of nodes whose hidden flag changed
    """
    if flags is None or len(flags) != len(nodes):
        got = "nothing" if flags is None else f"{len(flags)} flags"
        raise VisibilityError(f"Oracle returned {got} for {len(nodes)} nodes")

    for index, flag in enumerate(flags):
        if not isinstance(flag, bool):
            raise VisibilityError(
                f"Oracle returned {type(flag).__name__} for node {nodes[index].id}, expected bool"
            )

    changed = 0
    for node, flag in zip(nodes, flags):
        if node.hidden != flag:
            changed += 1
        node.hidden = flag
    return changed


def active_path(conversation: Conversation, leaf_id: Optional[str] = None) -> list[str]:
    """
    Raw node ids from the root down to leaf_id (default: the conversation's
    current node).
    """
    leaf_id = leaf_id or conversation.current_node
    if not leaf_id:
        return []

    chain = []
    seen = set()
    current = conversation.mapping.get(leaf_id)
    while current and current.id not in seen:
        seen.add(current.id)
        chain.append(current.id)
        current = conversation.mapping.get(current.parent_id) if current.parent_id else None
    return list(reversed(chain))


def visible_set_oracle(visible_ids) -> VisibilityOracle:
    """An oracle that reports exactly the given ids as present."""
    visible = set(visible_ids)

    async def check_visibility(node_ids: list[str]) -> list[HiddenFlag]:
        return [HiddenFlag(node_id not in visible) for node_id in node_ids]

    return check_visibility


def current_branch_oracle(conversation: Conversation) -> VisibilityOracle:
    """
    Offline oracle for an exported conversation.

    The page shows exactly one branch: the path from the root to the
    export's ``current_node``. Nodes on that path are visible, all others
    hidden.
    """
    path = active_path(conversation)
    if not path:
        logger.warning("Conversation %s has no current node; every node reports hidden",
                       conversation.conversation_id)
    return visible_set_oracle(path)
