"""``${VAR}`` references in configuration and ``.env`` loading.

Only the braced form is recognised. A bare ``$NAME`` would collide with the
``$DATE$`` and ``$RANGE_<low>_TO_<high>$`` prefix placeholders, which must
reach the prefix parser untouched.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, Union

from dotenv import load_dotenv

__all__ = ["expand_env_vars", "expand_options", "load_env_file"]

ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


def load_env_file(path: Optional[Union[str, Path]] = None) -> bool:
    """Load a .env file without overriding variables already set.

    With no path, python-dotenv searches upwards from the working directory.
    Returns False when nothing was loaded.
    """
    return load_dotenv(dotenv_path=path)


def expand_env_vars(value: str) -> str:
    """Replace ``${VAR}`` with its environment value; unset ones stay as written.

    Example:
        >>> os.environ["AZURE_STORAGE_ACCOUNT"] = "logsacct"
        >>> expand_env_vars("https://${AZURE_STORAGE_ACCOUNT}.blob.core.windows.net")
        'https://logsacct.blob.core.windows.net'
    """
    return ENV_VAR_PATTERN.sub(lambda m: os.environ.get(m.group(1), m.group(0)), value)


def _expand(value: Any) -> Any:
    if isinstance(value, str):
        return expand_env_vars(value)
    if isinstance(value, dict):
        return {key: _expand(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand(item) for item in value]
    return value


def expand_options(options: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of a parsed YAML mapping with every string expanded."""
    return _expand(options)
