"""
replayfetch Core - configuration shared by every component.
"""

from replayfetch.core.config import (
    ReplayFetchConfig,
    get_config,
    load_config,
    reset_config,
    set_config,
)

__all__ = [
    "ReplayFetchConfig",
    "get_config",
    "load_config",
    "reset_config",
    "set_config",
]
