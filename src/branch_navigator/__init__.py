"""
Branch Navigator
================

Rebuilds a branching ChatGPT conversation from its raw node mapping and
plans the sibling switches needed to bring any message onto the page.

Key insight: the page renders only one sibling per tree level. A hidden
message becomes visible once every ancestor level shows the sibling on its
path, and each "previous/next response" click moves that level by exactly
one position.
"""

__version__ = "0.1.0"

from .config import NavigatorConfig, load_config
from .core import (
    BranchNavigatorError,
    Conversation,
    ConversationFormatError,
    ConversationNode,
    DisplayNode,
    Edge,
    MalformedTreeError,
    NormalizedTree,
    OtherPart,
    RawMessage,
    StepExecutionError,
    TextPart,
    VisibilityError,
    load_conversation,
    parse_mapping,
)
from .navigation import Direction, Step, plan_steps
from .normalize import normalize
from .session import NavigationResult, NavigationSession
from .visibility import HiddenFlag, apply_visibility, current_branch_oracle

__all__ = [
    "NavigatorConfig",
    "load_config",
    "BranchNavigatorError",
    "Conversation",
    "ConversationFormatError",
    "ConversationNode",
    "DisplayNode",
    "Edge",
    "MalformedTreeError",
    "NormalizedTree",
    "OtherPart",
    "RawMessage",
    "StepExecutionError",
    "TextPart",
    "VisibilityError",
    "load_conversation",
    "parse_mapping",
    "Direction",
    "Step",
    "plan_steps",
    "normalize",
    "NavigationResult",
    "NavigationSession",
    "HiddenFlag",
    "apply_visibility",
    "current_branch_oracle",
]
