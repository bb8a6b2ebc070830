"""Small shared helpers."""

from __future__ import annotations

import os
import re

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


def expand_env_vars(config: object) -> object:
    """Recursively expand ``${VAR}`` references in a loaded YAML structure.

    Unknown variables are left untouched so a typo shows up verbatim in the
    resulting value instead of silently becoming an empty string.
    """
    if isinstance(config, dict):
        return {k: expand_env_vars(v) for k, v in config.items()}
    if isinstance(config, list):
        return [expand_env_vars(item) for item in config]
    if isinstance(config, str):

        def replace_env_var(match: re.Match[str]) -> str:
            return os.getenv(match.group(1), match.group(0))

        return _ENV_VAR_PATTERN.sub(replace_env_var, config)
    return config


def deep_merge(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:  # guard: loose-dict - YAML config merge
    """Merge ``override`` into a copy of ``base``, recursing into nested dicts."""
    result = base.copy()
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            result[key] = deep_merge(current, value)
        else:
            result[key] = value
    return result
