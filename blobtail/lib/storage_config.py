"""Configuration value helpers shared by the storage and cursor adapters.

Values may come from the YAML options (possibly containing ``${VAR}``
references) or fall back to well-known environment variables.
"""

from __future__ import annotations

import os
from typing import Any, Dict, Optional

from blobtail.lib.env import expand_env_vars

__all__ = ["get_config_value"]


def get_config_value(
    options: Optional[Dict[str, Any]],
    key: str,
    env_var: str,
    default: str = "",
) -> str:
    """Get a configuration value from options dict or environment variable.

    Handles ${VAR} expansion for values from YAML configs, then falls back
    to environment variable, then to default value.

    Args:
        options: Dict of options (may be None)
        key: Key to look up in options dict
        env_var: Environment variable to fall back to
        default: Default value if neither options nor env var provides a value

    Returns:
        The resolved configuration value

    Example:
        >>> options = {"connection_string": "${AZURE_STORAGE_CONNECTION_STRING}"}
        >>> get_config_value(options, "connection_string", "AZURE_STORAGE_CONNECTION_STRING")
        'DefaultEndpointsProtocol=https;AccountName=...'
    """
    value = options.get(key) if options else None
    if value and isinstance(value, str):
        value = expand_env_vars(value)
    if not value:
        value = os.environ.get(env_var, default)
    return value

