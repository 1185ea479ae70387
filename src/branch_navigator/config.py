"""
Runtime settings for navigation sessions and label rendering.
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

ENV_PREFIX = "BRANCH_NAVIGATOR_"


@dataclass(frozen=True)
class NavigatorConfig:
    # How many full plan-and-execute cycles a navigation may take.
    max_attempts: int = 5

    # Upper bound in seconds on one actuator call, including its settle wait.
    step_timeout: float = 10.0

    # Ask the page to scroll to the target once it is visible.
    scroll_to_target: bool = True

    # Truncate labels to this many characters (0 keeps them whole).
    label_max_length: int = 0


def _read_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(ENV_PREFIX + name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring %s%s=%r: not an integer", ENV_PREFIX, name, value)
        return default


def _read_float(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(ENV_PREFIX + name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Ignoring %s%s=%r: not a number", ENV_PREFIX, name, value)
        return default


def _read_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(ENV_PREFIX + name)
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in ('1', 'true', 'yes', 'on'):
        return True
    if lowered in ('0', 'false', 'no', 'off'):
        return False
    logger.warning("Ignoring %s%s=%r: not a boolean", ENV_PREFIX, name, value)
    return default


def load_config(env: Optional[Mapping[str, str]] = None) -> NavigatorConfig:
    """Build a NavigatorConfig from BRANCH_NAVIGATOR_* environment variables."""
    if env is None:
        env = os.environ

    defaults = NavigatorConfig()
    step_timeout = _read_float(env, 'STEP_TIMEOUT', defaults.step_timeout)
    if step_timeout <= 0:
        logger.warning("Step timeout must be positive, using %s", defaults.step_timeout)
        step_timeout = defaults.step_timeout

    return NavigatorConfig(
        max_attempts=max(1, _read_int(env, 'MAX_ATTEMPTS', defaults.max_attempts)),
        step_timeout=step_timeout,
        scroll_to_target=_read_bool(env, 'SCROLL_TO_TARGET', defaults.scroll_to_target),
        label_max_length=max(0, _read_int(env, 'LABEL_MAX_LENGTH', defaults.label_max_length)),
    )


def get_log_level(env: Optional[Mapping[str, str]] = None) -> str:
    """Log level for the CLI, from BRANCH_NAVIGATOR_LOG_LEVEL."""
    if env is None:
        env = os.environ
    level = env.get(ENV_PREFIX + 'LOG_LEVEL', 'WARNING').strip().upper()
    if level not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
        logger.warning("Ignoring %sLOG_LEVEL=%r", ENV_PREFIX, level)
        return 'WARNING'
    return level
