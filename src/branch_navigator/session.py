"""
Navigation sessions: the async workflow around the planner.

A session owns one normalized tree and talks to three external
collaborators:

- the visibility oracle, which reports which nodes are on the page
- the step actuator, which performs one sibling switch
- optional BranchActions, which edit or answer messages and scroll the page

Navigation plans from the current visibility, executes the steps one at a
time, re-checks visibility after each step, and starts over with a fresh plan
until the target shows up or the attempts run out.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Protocol

from .config import NavigatorConfig
from .core import DisplayNode, NormalizedTree, StepExecutionError
from .navigation import Step, plan_steps
from .visibility import VisibilityOracle, apply_visibility

logger = logging.getLogger(__name__)

StepExecutor = Callable[[Step], Awaitable[None]]

EVENTS = frozenset({
    'tree_replaced',
    'visibility_updated',
    'navigation_succeeded',
    'navigation_failed',
    'navigation_cancelled',
    'branch_created',
    'refresh_requested',
    'favorite_added',
    'favorite_removed',
})


class BranchActions(Protocol):
    """Page actions beyond switching siblings."""

    async def edit_message(self, node_id: str, text: str) -> None:
        ...

    async def respond_to_message(self, node_id: str, child_ids: list[str], text: str) -> None:
        ...

    async def scroll_to(self, node_id: str) -> None:
        ...


@dataclass
class SessionEvent:
    name: str
    node_id: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class NavigationResult:
    """Outcome of one navigate_to call."""
    target_id: str
    success: bool
    message: str
    attempts: int = 0
    steps_executed: int = 0
    cancelled: bool = False


class NavigationSession:
    """Navigation, editing and favorites for one conversation tree."""

    def __init__(
        self,
        tree: NormalizedTree,
        check_visibility: VisibilityOracle,
        execute_step: StepExecutor,
        actions: Optional[BranchActions] = None,
        config: Optional[NavigatorConfig] = None,
    ):
        self.tree = tree
        self.actions = actions
        self.config = config or NavigatorConfig()
        self._check_visibility = check_visibility
        self._execute_step = execute_step
        self._observers: dict[str, list[Callable[[SessionEvent], None]]] = {}
        self._favorites: dict[str, None] = {}
        self._lock = asyncio.Lock()
        self._generation = 0
        self._latest_target: Optional[str] = None

    # -------------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------------

    def subscribe(self, event: str, callback: Callable[[SessionEvent], None]) -> Callable[[], None]:
        """
        Register a callback for a session event.

        Returns:
            a function that removes the registration again
        """
        if event not in EVENTS:
            raise ValueError(f"Unknown event: {event}")
        self._observers.setdefault(event, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._observers.get(event, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def _emit(self, name: str, node_id: Optional[str] = None, **data) -> None:
        event = SessionEvent(name=name, node_id=node_id, data=data)
        for callback in list(self._observers.get(name, [])):
            try:
                callback(event)
            except Exception:
                logger.exception("Observer for %s failed", name)

    # -------------------------------------------------------------------------
    # Tree and visibility
    # -------------------------------------------------------------------------

    def replace_tree(self, tree: NormalizedTree) -> None:
        """Swap in a freshly normalized tree (after a refetch)."""
        self.tree = tree
        self._emit('tree_replaced', node_count=len(tree))

    async def refresh_visibility(self) -> int:
        """
        Ask the oracle about every node and store the answers.

        Oracle failures propagate; node state is left as it was.

        Returns:
            number of nodes whose hidden flag changed
        """
        nodes = list(self.tree.nodes)
        if not nodes:
            return 0

        flags = await self._check_visibility([node.id for node in nodes])
        changed = apply_visibility(nodes, flags)

        logger.debug("Visibility refreshed: %d changed, %d hidden", changed, self.tree.hidden_count)
        self._emit('visibility_updated', changed=changed, hidden=self.tree.hidden_count)
        return changed

    # -------------------------------------------------------------------------
    # Navigation
    # -------------------------------------------------------------------------

    def _superseded(self, ticket: int, target_id: str) -> bool:
        return self._generation > ticket and self._latest_target != target_id

    async def _run_step(self, step: Step) -> None:
        try:
            await asyncio.wait_for(self._execute_step(step), timeout=self.config.step_timeout)
        except asyncio.TimeoutError as e:
            raise StepExecutionError(
                f"Step on {step.node_id} timed out after {self.config.step_timeout}s", step
            ) from e
        except StepExecutionError:
            raise
        except Exception as e:
            raise StepExecutionError(f"Step on {step.node_id} failed: {e}", step) from e

    async def navigate_to(self, target_id: str) -> NavigationResult:
        """
        Make target_id the visible branch.

        A newer call for a different target cancels this one at its next
        checkpoint. Step failures are retried with a fresh plan up to
        config.max_attempts times; oracle failures propagate.
        """
        self._generation += 1
        ticket = self._generation
        self._latest_target = target_id

        async with self._lock:
            return await self._navigate(target_id, ticket)

    async def _navigate(self, target_id: str, ticket: int) -> NavigationResult:
        attempts = 0
        executed = 0

        if self._superseded(ticket, target_id):
            return self._cancelled(target_id, attempts, executed)

        if target_id not in self.tree:
            result = NavigationResult(target_id, False, f"Unknown node: {target_id}")
            self._emit('navigation_failed', target_id, message=result.message)
            return result

        await self.refresh_visibility()
        last_error = None

        while True:
            target = self.tree.get(target_id)
            if target is None:
                last_error = "node is no longer in the tree"
                break
            if not target.hidden:
                return await self._succeeded(target_id, attempts, executed)
            if attempts >= self.config.max_attempts:
                break
            if self._superseded(ticket, target_id):
                return self._cancelled(target_id, attempts, executed)

            attempts += 1
            steps = plan_steps(self.tree.nodes, target_id)
            logger.info("Navigating to %s, attempt %d/%d: %d step(s)",
                        target_id, attempts, self.config.max_attempts, len(steps))

            if not steps:
                last_error = "no sibling switch can reveal it"
                await self.refresh_visibility()
                continue

            try:
                for step in steps:
                    if self._superseded(ticket, target_id):
                        return self._cancelled(target_id, attempts, executed)
                    await self._run_step(step)
                    executed += 1
                    await self.refresh_visibility()
                    target = self.tree.get(target_id)
                    if target is None or not target.hidden:
                        break
            except StepExecutionError as e:
                last_error = str(e)
                logger.warning("Attempt %d for %s failed: %s", attempts, target_id, e)
                await self.refresh_visibility()

        message = f"navigation failed: {target_id} still hidden after {attempts} attempt(s)"
        if last_error:
            message += f" ({last_error})"
        logger.warning(message)
        self._emit('navigation_failed', target_id, message=message, attempts=attempts)
        return NavigationResult(target_id, False, message, attempts, executed)

    async def _succeeded(self, target_id: str, attempts: int, executed: int) -> NavigationResult:
        if self.config.scroll_to_target and self.actions is not None:
            try:
                await self.actions.scroll_to(target_id)
            except Exception as e:
                logger.warning("Could not scroll to %s: %s", target_id, e)

        self._emit('navigation_succeeded', target_id, attempts=attempts, steps=executed)
        return NavigationResult(
            target_id, True, f"Showing {target_id}", attempts, executed
        )

    def _cancelled(self, target_id: str, attempts: int, executed: int) -> NavigationResult:
        logger.info("Navigation to %s superseded by %s", target_id, self._latest_target)
        self._emit('navigation_cancelled', target_id, superseded_by=self._latest_target)
        return NavigationResult(
            target_id, False, f"Navigation to {target_id} cancelled",
            attempts, executed, cancelled=True,
        )

    # -------------------------------------------------------------------------
    # Editing
    # -------------------------------------------------------------------------

    async def send_message(self, node_id: str, text: str) -> tuple[bool, str]:
        """
        Edit a user message or answer an assistant message, creating a new
        branch.

        The node is navigated to first when it is not on the page.

        Returns:
            tuple: (success: bool, message: str)
        """
        if not text or not text.strip():
            return False, "Message is empty"

        node = self.tree.get(node_id)
        if node is None:
            return False, f"Unknown node: {node_id}"
        if self.actions is None:
            return False, "No branch actions available"
        if node.role not in ('user', 'assistant'):
            return False, f"Cannot send from a {node.role or 'unknown'} node"

        if node.hidden:
            result = await self.navigate_to(node_id)
            if not result.success:
                return False, result.message

        try:
            if node.role == 'user':
                await self.actions.edit_message(node_id, text)
                outcome = "Edited message"
            else:
                await self.actions.respond_to_message(node_id, list(node.child_ids), text)
                outcome = "Responded to message"
        except Exception as e:
            logger.warning("Sending to %s failed: %s", node_id, e)
            return False, f"Error: {e}"

        self._emit('branch_created', node_id, role=node.role)
        self._emit('refresh_requested', node_id)
        return True, outcome

    # -------------------------------------------------------------------------
    # Favorites
    # -------------------------------------------------------------------------

    @property
    def favorites(self) -> list[DisplayNode]:
        """Favorite nodes still present in the current tree, oldest first."""
        return [self.tree.get(i) for i in self._favorites if i in self.tree]

    def add_favorite(self, node_id: str) -> bool:
        if node_id not in self.tree or node_id in self._favorites:
            return False
        self._favorites[node_id] = None
        self._emit('favorite_added', node_id)
        return True

    def remove_favorite(self, node_id: str) -> bool:
        if node_id not in self._favorites:
            return False
        del self._favorites[node_id]
        self._emit('favorite_removed', node_id)
        return True
