"""
Normalization of a raw conversation mapping into a renderable tree.

Stage: RAW MAPPING -> PRUNED DISPLAY TREE

- Find the raw root (or recover with a virtual root)
- Promote the effective display root past the content-free system preamble
- Replace every invalid child with its nearest valid descendant, keeping
  sibling order
- Build DisplayNodes and edges in depth-first pre-order

The raw mapping is never modified; DisplayNodes are built fresh and refer to
raw nodes by id.
"""

import logging
from collections import deque
from typing import Optional

from .core import (
    CONTEXT_NOTE_TYPES,
    VIRTUAL_ROOT_ID,
    ConversationNode,
    DisplayNode,
    Edge,
    MalformedTreeError,
    NormalizedTree,
    RawMessage,
    TextPart,
)

logger = logging.getLogger(__name__)

ROOT_LABEL = "Start of your conversation"
NO_TEXT_LABEL = "No text provided"
INSTRUCTIONS_LABEL = "Custom GPT Instructions"

_EXCLUDED_ROLES = ('system', 'tool')


def is_valid_node(node: Optional[ConversationNode]) -> bool:
    """Whether a raw node is eligible for display.

    A valid node has a message with content, is not authored by system or
    tool, and is addressed to everyone.
    """
    if node is None or node.message is None:
        return False
    message = node.message

    has_content = message.has_first_part_content or (
        message.content_type == 'user_editable_context'
        and bool(message.user_instructions)
    )
    return (
        has_content
        and message.author_role not in _EXCLUDED_ROLES
        and message.recipient == 'all'
    )


def _truncate(text: str, max_length: int) -> str:
    if max_length and len(text) > max_length:
        return text[:max_length].rstrip() + '...'
    return text


def get_message_label(message: RawMessage) -> str:
    """Extract the display text of a message, by content type."""
    part = message.first_part
    if message.content_type == 'text' and isinstance(part, TextPart) and not part.is_empty:
        return part.text

    if message.content_type == 'user_editable_context':
        return message.user_instructions or INSTRUCTIONS_LABEL

    text = message.first_text
    if text:
        return text
    return NO_TEXT_LABEL


def find_raw_root(mapping: dict[str, ConversationNode]) -> str:
    """
    Find the unique node without a parent.

    Raises:
        MalformedTreeError: when there is no such node or more than one
    """
    candidates = [node_id for node_id, node in mapping.items() if node.parent_id is None]
    if len(candidates) != 1:
        raise MalformedTreeError(
            f"Expected exactly one root node, found {len(candidates)}",
            candidates=candidates,
        )
    return candidates[0]


class _MappingView:
    """Read-only view over the raw mapping, optionally with a virtual root.

    The virtual root adopts every parentless or orphaned node so a mapping
    without a unique root can still be walked.
    """

    def __init__(self, mapping: dict[str, ConversationNode], virtual_root: bool = False):
        self.mapping = mapping
        self.virtual: Optional[ConversationNode] = None
        self._adopted: set[str] = set()

        if virtual_root:
            adopted = [
                node_id for node_id, node in mapping.items()
                if node.parent_id is None or node.parent_id not in mapping
            ]
            self._adopted = set(adopted)
            self.virtual = ConversationNode(
                id=VIRTUAL_ROOT_ID, parent_id=None, child_ids=adopted, message=None
            )

    def get(self, node_id: str) -> Optional[ConversationNode]:
        if self.virtual is not None and node_id == VIRTUAL_ROOT_ID:
            return self.virtual
        return self.mapping.get(node_id)

    def children(self, node_id: str) -> list[str]:
        node = self.get(node_id)
        return node.child_ids if node else []

    def parent(self, node_id: str) -> Optional[str]:
        if node_id in self._adopted:
            return VIRTUAL_ROOT_ID
        node = self.get(node_id)
        return node.parent_id if node else None


def find_display_root(view: _MappingView, raw_root_id: str) -> Optional[str]:
    """
    Breadth-first search below the raw root for the first user message with
    content, and return its parent id.

    The parent becomes the display root, so sibling variants of the first
    turn (edits of the opening message) stay in the tree.
    """
    queue = deque(c for c in view.children(raw_root_id) if view.get(c) is not None)
    seen = {raw_root_id}

    while queue:
        node = view.get(queue.popleft())
        if node is None or node.id in seen:
            continue
        seen.add(node.id)

        if node.role == 'user' and node.message.has_first_part_content:
            parent_id = view.parent(node.id)
            if parent_id is not None and view.get(parent_id) is not None:
                return parent_id

        queue.extend(c for c in node.child_ids if view.get(c) is not None)

    return None


def promote_child(view: _MappingView, child_id: str, parent_id: str) -> Optional[str]:
    """
    Follow first children from child_id until a valid node is reached.

    Returns:
        id of the nearest valid descendant, or None if the chain ends first
    """
    current = view.get(child_id)
    if current is None:
        logger.warning("Node %s references missing child %s, skipping", parent_id, child_id)
        return None

    walked = set()
    while not is_valid_node(current):
        walked.add(current.id)
        if not current.child_ids:
            return None
        next_id = current.child_ids[0]
        next_node = view.get(next_id)
        if next_node is None:
            logger.warning("Node %s references missing child %s, skipping", current.id, next_id)
            return None
        if next_id in walked:
            logger.warning("Cycle detected below node %s, dropping branch", parent_id)
            return None
        current = next_node

    return current.id


class _DisplayBuilder:
    def __init__(self, label_max_length: int):
        self.label_max_length = label_max_length

    def root(self, node: ConversationNode, virtual: bool) -> DisplayNode:
        message = node.message
        if message is not None and message.author_role not in (None, 'system'):
            label = get_message_label(message)
        else:
            label = ROOT_LABEL

        return DisplayNode(
            id=node.id,
            parent_id=None,
            label=_truncate(label, self.label_max_length),
            role=message.author_role if message else None,
            timestamp=message.create_time if message else None,
            content_type=message.content_type if message else None,
            model_slug=message.model_slug if message else None,
            degraded=virtual,
        )

    def child(self, node: ConversationNode, parent_id: str) -> DisplayNode:
        message = node.message
        if message.author_role is None:
            logger.warning("Node %s has a message without an author", node.id)
            label = f"Message without author [ID: {node.id}]"
            degraded = True
        else:
            label = get_message_label(message)
            degraded = False

        return DisplayNode(
            id=node.id,
            parent_id=parent_id,
            label=_truncate(label, self.label_max_length),
            role=message.author_role,
            timestamp=message.create_time,
            content_type=message.content_type,
            model_slug=message.model_slug,
            visually_hidden=(
                message.content_type in CONTEXT_NOTE_TYPES or message.hidden_from_conversation
            ),
            degraded=degraded,
        )


def normalize(mapping: dict[str, ConversationNode], label_max_length: int = 0) -> NormalizedTree:
    """
    Turn a raw mapping into a pruned display tree.

    Args:
        mapping: node id -> ConversationNode, as loaded by core.parse_mapping
        label_max_length: truncate labels to this length (0 = no limit)

    Returns:
        NormalizedTree with the display root, nodes in pre-order and edges
    """
    if not mapping:
        return NormalizedTree(root=None)

    try:
        raw_root_id = find_raw_root(mapping)
        view = _MappingView(mapping)
    except MalformedTreeError as e:
        logger.warning("%s (%s); using a virtual root", e, ", ".join(e.candidates) or "none")
        view = _MappingView(mapping, virtual_root=True)
        raw_root_id = VIRTUAL_ROOT_ID

    builder = _DisplayBuilder(label_max_length)

    display_root_id = find_display_root(view, raw_root_id)
    if display_root_id is None:
        logger.info("No user message found below root %s; conversation is empty", raw_root_id)
        root = builder.root(view.get(raw_root_id), virtual=raw_root_id == VIRTUAL_ROOT_ID)
        return NormalizedTree(root=root, nodes=[root])

    root = builder.root(view.get(display_root_id), virtual=display_root_id == VIRTUAL_ROOT_ID)

    nodes: list[DisplayNode] = []
    edges: list[Edge] = []
    placed = {root.id}
    stack = [root]

    while stack:
        current = stack.pop()
        nodes.append(current)

        promoted: list[str] = []
        for child_id in view.children(current.id):
            target = promote_child(view, child_id, current.id)
            if target is None:
                continue
            if target in placed:
                logger.warning("Node %s reached twice, keeping the first placement", target)
                continue
            placed.add(target)
            promoted.append(target)

        current.child_ids = promoted
        children = [builder.child(view.get(t), current.id) for t in promoted]
        edges.extend(Edge(current.id, c.id) for c in children)
        stack.extend(reversed(children))

    skipped = len(mapping) - len(nodes)
    logger.debug("Normalized %d raw nodes into %d display nodes (%d pruned)",
                 len(mapping), len(nodes), skipped)

    return NormalizedTree(root=root, nodes=nodes, edges=edges)
