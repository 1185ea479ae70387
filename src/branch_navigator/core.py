"""
Core data model for Branch Navigator.

This module contains the raw and display node types, the content part
union, the exception hierarchy and the helpers that load exported
conversation JSON into those types.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)


VIRTUAL_ROOT_ID = "__virtual_root__"

# Content types that are part of the tree but never shown as messages
CONTEXT_NOTE_TYPES = frozenset({"model_editable_context", "user_editable_context"})


# =============================================================================
# Errors
# =============================================================================

class BranchNavigatorError(Exception):
    """Base class for all Branch Navigator errors."""


class MalformedTreeError(BranchNavigatorError):
    """The raw mapping does not have exactly one parentless node."""

    def __init__(self, message: str, candidates: Optional[list[str]] = None):
        super().__init__(message)
        self.candidates = candidates or []


class ConversationFormatError(BranchNavigatorError):
    """The input JSON is not a conversation or a mapping."""


class VisibilityError(BranchNavigatorError):
    """The visibility oracle returned a response that cannot be applied."""


class StepExecutionError(BranchNavigatorError):
    """A single branch switch could not be performed."""

    def __init__(self, message: str, step: Any = None):
        super().__init__(message)
        self.step = step


# =============================================================================
# Content parts
# =============================================================================

@dataclass(frozen=True)
class TextPart:
    """A plain string content part."""
    text: str

    @property
    def is_empty(self) -> bool:
        return not self.text


@dataclass(frozen=True)
class OtherPart:
    """A structured content part (image pointer, audio, ...)."""
    payload: Any

    @property
    def is_empty(self) -> bool:
        return not any(_string_entries(self.payload))


ContentPart = Union[TextPart, OtherPart]


def _string_entries(payload: Any) -> list[str]:
    """String-typed entries of a payload: itself, or its top-level values."""
    if isinstance(payload, str):
        return [payload]
    if isinstance(payload, dict):
        return [v for v in payload.values() if isinstance(v, str)]
    if isinstance(payload, (list, tuple)):
        return [v for v in payload if isinstance(v, str)]
    return []


def parse_content_part(raw: Any) -> ContentPart:
    if isinstance(raw, str):
        return TextPart(raw)
    return OtherPart(raw)


# =============================================================================
# Raw nodes
# =============================================================================

@dataclass
class RawMessage:
    """The message carried by a raw conversation node."""
    author_role: Optional[str]
    recipient: str = "all"
    content_type: Optional[str] = None
    content_parts: list[ContentPart] = field(default_factory=list)
    create_time: Optional[float] = None
    model_slug: Optional[str] = None
    user_instructions: Optional[str] = None
    hidden_from_conversation: bool = False

    @property
    def first_part(self) -> Optional[ContentPart]:
        return self.content_parts[0] if self.content_parts else None

    @property
    def has_first_part_content(self) -> bool:
        part = self.first_part
        return part is not None and not part.is_empty

    @property
    def first_text(self) -> Optional[str]:
        """The first string-typed part, if any."""
        for part in self.content_parts:
            if isinstance(part, TextPart):
                return part.text
        return None


@dataclass
class ConversationNode:
    """One node of the raw mapping, as exported."""
    id: str
    parent_id: Optional[str]
    child_ids: list[str] = field(default_factory=list)
    message: Optional[RawMessage] = None

    @property
    def role(self) -> Optional[str]:
        return self.message.author_role if self.message else None


@dataclass
class Conversation:
    """A conversation export: metadata plus its raw mapping."""
    conversation_id: str
    title: str
    current_node: Optional[str]
    mapping: dict[str, ConversationNode] = field(default_factory=dict)

    @property
    def node_count(self) -> int:
        return len(self.mapping)


# =============================================================================
# Display nodes
# =============================================================================

@dataclass
class DisplayNode:
    """A node of the pruned tree, ready for layout and navigation.

    ``hidden`` reflects live visibility on the page and is always an explicit
    bool. ``visually_hidden`` marks nodes that exist in the tree but are never
    rendered as messages.
    """
    id: str
    parent_id: Optional[str]
    child_ids: list[str] = field(default_factory=list)
    label: str = ""
    role: Optional[str] = None
    timestamp: Optional[float] = None
    content_type: Optional[str] = None
    model_slug: Optional[str] = None
    hidden: bool = True
    visually_hidden: bool = False
    degraded: bool = False

    @property
    def is_branch_point(self) -> bool:
        return len(self.child_ids) > 1

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "parent": self.parent_id,
            "children": list(self.child_ids),
            "label": self.label,
            "role": self.role,
            "timestamp": self.timestamp,
            "content_type": self.content_type,
            "model_slug": self.model_slug,
            "hidden": self.hidden,
            "visually_hidden": self.visually_hidden,
            "degraded": self.degraded,
        }


@dataclass(frozen=True)
class Edge:
    source: str
    target: str

    @property
    def id(self) -> str:
        return f"{self.source}-{self.target}"


@dataclass
class NormalizedTree:
    """Result of one normalization pass."""
    root: Optional[DisplayNode]
    nodes: list[DisplayNode] = field(default_factory=list)
    edges: list[Edge] = field(default_factory=list)

    def __post_init__(self):
        self._by_id = {node.id: node for node in self.nodes}

    def get(self, node_id: str) -> Optional[DisplayNode]:
        return self._by_id.get(node_id)

    def __contains__(self, node_id: str) -> bool:
        return node_id in self._by_id

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def hidden_count(self) -> int:
        return sum(1 for n in self.nodes if n.hidden)

    def to_dict(self) -> dict:
        return {
            "root": self.root.id if self.root else None,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [
                {"id": e.id, "source": e.source, "target": e.target}
                for e in self.edges
            ],
        }


# =============================================================================
# Loading
# =============================================================================

def _safe_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_message(raw: Any) -> Optional[RawMessage]:
    """Convert an exported ``message`` object into a RawMessage.

    Returns None when there is no message. Missing pieces degrade to empty
    values instead of failing; a missing author leaves ``author_role`` unset.
    """
    if not isinstance(raw, dict):
        return None

    author = raw.get('author')
    role = author.get('role') if isinstance(author, dict) else None

    content = raw.get('content')
    if not isinstance(content, dict):
        content = {}

    parts_raw = content.get('parts')
    if isinstance(parts_raw, list):
        # null parts keep their slot so the first part stays the first part
        parts = [TextPart('') if p is None else parse_content_part(p) for p in parts_raw]
    elif isinstance(content.get('text'), str):
        # code / execution_output carry a single text field
        parts = [TextPart(content['text'])]
    else:
        parts = []

    metadata = raw.get('metadata')
    if not isinstance(metadata, dict):
        metadata = {}

    instructions = content.get('user_instructions')
    recipient = raw.get('recipient')

    return RawMessage(
        author_role=role if isinstance(role, str) else None,
        recipient=recipient if isinstance(recipient, str) else "all",
        content_type=content.get('content_type'),
        content_parts=parts,
        create_time=_safe_float(raw.get('create_time')),
        model_slug=metadata.get('model_slug'),
        user_instructions=instructions if isinstance(instructions, str) else None,
        hidden_from_conversation=bool(metadata.get('is_visually_hidden_from_conversation')),
    )


def parse_mapping(raw_mapping: Any) -> dict[str, ConversationNode]:
    """
    Parse an exported ``mapping`` object (node id -> node).

    Args:
        raw_mapping: dict keyed by node id, as found in conversation JSON

    Returns:
        dict of node id -> ConversationNode, in input order
    """
    if not isinstance(raw_mapping, dict):
        raise ConversationFormatError("Expected the mapping to be a JSON object keyed by node id")

    mapping: dict[str, ConversationNode] = {}
    for key, raw in raw_mapping.items():
        if not isinstance(raw, dict):
            logger.warning("Skipping mapping entry %s: not an object", key)
            continue

        node_id = str(raw.get('id') or key)
        parent = raw.get('parent')
        children = raw.get('children') or []
        if not isinstance(children, list):
            logger.warning("Node %s has a non-list children field, treating as leaf", node_id)
            children = []

        mapping[node_id] = ConversationNode(
            id=node_id,
            parent_id=str(parent) if parent is not None else None,
            child_ids=[str(c) for c in children],
            message=parse_message(raw.get('message')),
        )

    return mapping


def parse_conversation(data: Any) -> Conversation:
    """Build a Conversation from an exported conversation object.

    A bare mapping (node id -> node) is accepted as well.
    """
    if not isinstance(data, dict):
        raise ConversationFormatError("Expected a conversation JSON object")

    if 'mapping' in data:
        raw_mapping = data.get('mapping') or {}
    elif all(isinstance(v, dict) and ('children' in v or 'parent' in v) for v in data.values()):
        raw_mapping = data
        data = {}
    else:
        raise ConversationFormatError("Conversation object has no 'mapping'")

    conversation_id = data.get('conversation_id') or data.get('id') or "unknown-id"
    current = data.get('current_node')

    return Conversation(
        conversation_id=str(conversation_id),
        title=str(data.get('title') or "Untitled"),
        current_node=str(current) if current else None,
        mapping=parse_mapping(raw_mapping),
    )


def select_conversation(data: Any, conversation_id: Optional[str] = None) -> Conversation:
    """
    Pick one conversation out of loaded JSON.

    Handles a single conversation object, a bare mapping, or a list of
    conversations (the ``conversations.json`` export format).
    """
    if isinstance(data, list):
        candidates = [c for c in data if isinstance(c, dict)]
        if conversation_id is None:
            if len(candidates) == 1:
                return parse_conversation(candidates[0])
            raise ConversationFormatError(
                f"File holds {len(candidates)} conversations; choose one by id"
            )
        for candidate in candidates:
            if conversation_id in (candidate.get('conversation_id'), candidate.get('id')):
                return parse_conversation(candidate)
        raise ConversationFormatError(f"Conversation not found: {conversation_id}")

    conversation = parse_conversation(data)
    if conversation_id is not None and conversation.conversation_id != conversation_id:
        raise ConversationFormatError(f"Conversation not found: {conversation_id}")
    return conversation


def load_conversation(path: Path, conversation_id: Optional[str] = None) -> Conversation:
    """Load a conversation from a JSON file on disk."""
    with open(path, 'r', encoding='utf-8') as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConversationFormatError(f"Invalid JSON in {path}: {e}") from e
    return select_conversation(data, conversation_id)
