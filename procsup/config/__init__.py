"""
Configuration: YAML loading with environment overrides and the supervisor
settings object.
"""

from .loader import (
    DEFAULT_ENV_PREFIX,
    apply_env_overrides,
    convert_env_value,
    get_env_overrides,
    load_config,
)
from .supervisor import SupervisorConfig

__all__ = [
    "DEFAULT_ENV_PREFIX",
    "SupervisorConfig",
    "apply_env_overrides",
    "convert_env_value",
    "get_env_overrides",
    "load_config",
]
