"""
Branch navigation planning.

Only one sibling per tree level is rendered at a time, and the page can only
move one sibling left or right per action ("Previous response" / "Next
response"). To reveal a hidden node every ancestor level that shows the
wrong sibling has to be switched, one position at a time, starting from the
level closest to the root.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from .core import DisplayNode

logger = logging.getLogger(__name__)


class Direction(str, Enum):
    """Which sibling control to press: previous (LEFT) or next (RIGHT)."""
    LEFT = "left"
    RIGHT = "right"


@dataclass(frozen=True)
class Step:
    """Switch the sibling currently shown at node_id's level once."""
    node_id: str
    closer_direction: Direction

    def to_dict(self) -> dict:
        return {"nodeId": self.node_id, "direction": self.closer_direction.value}


def _level_steps(parent: DisplayNode, child_index: int, active_index: int) -> list[Step]:
    """Steps for one level, in execution order."""
    children = parent.child_ids

    if active_index == -1:
        # Nothing at this level is rendered yet; walk from the first sibling.
        return [Step(children[i], Direction.RIGHT) for i in range(child_index)]

    move_right = child_index > active_index
    direction = Direction.RIGHT if move_right else Direction.LEFT
    delta = 1 if move_right else -1
    count = abs(active_index - child_index)
    return [Step(children[active_index + i * delta], direction) for i in range(count)]


def plan_steps(nodes: Iterable[DisplayNode], target_id: str) -> list[Step]:
    """
    Compute the sibling switches that make target_id visible.

    Walks from the target up through its hidden ancestors. At every level
    with more than one child, the steps move the rendered sibling to the
    ancestor on the target's path. Levels are returned top-down; a broken
    ancestor chain returns the levels gathered so far.

    Args:
        nodes: snapshot of the display tree with current hidden flags
        target_id: node to reveal

    Returns:
        steps to hand to the actuator in order; empty if the target is
        unknown or already visible
    """
    by_id = {node.id: node for node in nodes}

    current: Optional[DisplayNode] = by_id.get(target_id)
    if current is None:
        logger.debug("Target %s not in tree, nothing to plan", target_id)
        return []

    levels: list[list[Step]] = []
    visited = {current.id}

    while current.hidden:
        parent = by_id.get(current.parent_id) if current.parent_id else None
        if parent is None:
            if current.parent_id:
                logger.warning("Ancestor %s of %s is missing; plan is partial",
                               current.parent_id, target_id)
            break

        if parent.id in visited:
            logger.warning("Cycle at %s while planning for %s", parent.id, target_id)
            break
        visited.add(parent.id)

        try:
            child_index = parent.child_ids.index(current.id)
        except ValueError:
            logger.warning("Node %s is not listed under its parent %s; plan is partial",
                           current.id, parent.id)
            break

        if len(parent.child_ids) > 1:
            active_index = next(
                (i for i, child_id in enumerate(parent.child_ids)
                 if child_id in by_id and by_id[child_id].hidden is False),
                -1,
            )
            levels.append(_level_steps(parent, child_index, active_index))

        current = parent

    return [step for level in reversed(levels) for step in level]
