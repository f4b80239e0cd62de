"""Environment variable substitution for configuration values.

Supports ``${VAR_NAME}`` and ``${VAR_NAME:default_value}``. A doubled dollar
(``$${VAR}``) is left as the literal text ``${VAR}`` so SQL or mapping
snippets that contain the syntax can be written verbatim.
"""

from __future__ import annotations

import os
import re
from typing import Any, Dict, List, Mapping, Optional

_ENV_VAR_PATTERN = re.compile(r"(\$?)\$\{([^}:]+)(?::([^}]*))?\}")


def substitute_env_vars(value: Any, environ: Optional[Mapping[str, str]] = None) -> Any:
    """Recursively substitute environment variables in config values.

    Raises:
        ValueError: If a referenced variable is not set and has no default
    """
    env = os.environ if environ is None else environ

    if isinstance(value, str):

        def replacer(match: re.Match) -> str:
            escaped, var_name, default_value = match.groups()
            if escaped:
                return match.group(0)[1:]

            env_value = env.get(var_name)
            if env_value is not None:
                return env_value
            if default_value is not None:
                return default_value
            raise ValueError(
                f"Environment variable '{var_name}' is not set and no default provided"
            )

        return _ENV_VAR_PATTERN.sub(replacer, value)

    if isinstance(value, dict):
        return {k: substitute_env_vars(v, env) for k, v in value.items()}

    if isinstance(value, list):
        return [substitute_env_vars(item, env) for item in value]

    return value


def find_env_references(value: Any) -> List[str]:
    """Return the variable names referenced anywhere in ``value``."""
    found: List[str] = []
    if isinstance(value, str):
        for escaped, name, _default in _ENV_VAR_PATTERN.findall(value):
            if not escaped and name not in found:
                found.append(name)
    elif isinstance(value, dict):
        for item in value.values():
            found.extend(n for n in find_env_references(item) if n not in found)
    elif isinstance(value, list):
        for item in value:
            found.extend(n for n in find_env_references(item) if n not in found)
    return found


def apply_env_substitution(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable substitution to entire config."""
    return substitute_env_vars(config)
