"""
Environment variable substitution for configuration values.

``${VAR_NAME}`` is replaced with the variable's value; unknown variables are
left untouched so validation can report them verbatim.
"""

import os
import re
from typing import Any

_PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")


def resolve_config(config_data: Any) -> Any:
    """
    Resolve ``${VAR_NAME}`` placeholders recursively.

    Args:
        config_data: Parsed YAML document

    Returns:
        A copy with every placeholder in string values substituted
    """
    if isinstance(config_data, dict):
        return {k: resolve_config(v) for k, v in config_data.items()}
    if isinstance(config_data, list):
        return [resolve_config(item) for item in config_data]
    if isinstance(config_data, str):
        return _PLACEHOLDER.sub(lambda m: os.getenv(m.group(1), m.group(0)), config_data)
    return config_data
