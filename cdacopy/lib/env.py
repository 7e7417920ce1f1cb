"""Environment variable references in client configuration.

Config values may reference ``${VAR}`` or ``$VAR``. References are expanded
before the config is validated; an unset variable is reported as a
configuration issue under the dotted name of the field that uses it.

Variables can be loaded from a .env file first (python-dotenv).
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from dotenv import load_dotenv

from cdacopy.lib.errors import ConfigurationError

logger = logging.getLogger(__name__)

__all__ = ["expand_config", "expand_env_vars", "load_env_file"]

# ${VAR_NAME} or $VAR_NAME
ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)")


def load_env_file(path: Optional[Union[str, Path]] = None, *, override: bool = False) -> bool:
    """Load environment variables from a .env file.

    Args:
        path: Explicit .env file. If None, python-dotenv searches the
              current directory and its parents, and a missing file is fine.
        override: If True, values from the file replace existing variables.

    Returns:
        True if a .env file was found and loaded.

    Raises:
        ConfigurationError: An explicit path does not exist.
    """
    if path is not None and not Path(path).is_file():
        raise ConfigurationError(
            f"Env file not found: {path}",
            field="--env-file",
            value=path,
            suggestion="Pass the path of an existing .env file, or drop --env-file",
        )
    loaded = load_dotenv(dotenv_path=path, override=override)
    if loaded:
        logger.info("Loaded environment variables from %s", path or ".env")
    return loaded


def expand_env_vars(value: str, missing: Optional[List[str]] = None) -> str:
    """Expand ``${VAR}`` and ``$VAR`` references in a string.

    Unset variables are left as written. Their names are appended to
    ``missing`` when a list is given.

    Example:
        >>> os.environ["CDA_BUCKET"] = "prod-cda"
        >>> expand_env_vars("s3://${CDA_BUCKET}/")
        's3://prod-cda/'
    """

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1) or match.group(2)
        env_value = os.environ.get(var_name)
        if env_value is None:
            if missing is not None:
                missing.append(var_name)
            return str(match.group(0))
        return env_value

    return ENV_VAR_PATTERN.sub(replacer, value)


def _expand(value: Any, field: str, issues: List[str]) -> Any:
    if isinstance(value, str):
        missing: List[str] = []
        expanded = expand_env_vars(value, missing)
        for var_name in missing:
            issues.append(f"{field} references unset environment variable {var_name}")
        return expanded
    if isinstance(value, dict):
        return {key: _expand(item, f"{field}.{key}" if field else str(key), issues) for key, item in value.items()}
    if isinstance(value, list):
        return [_expand(item, f"{field}[{index}]", issues) for index, item in enumerate(value)]
    return value


def expand_config(config: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """Expand environment references throughout a raw config mapping.

    Returns:
        A new mapping, and one issue per unset variable, e.g.
        ``"source.bucket_name references unset environment variable CDA_BUCKET"``.
    """
    issues: List[str] = []
    expanded = _expand(config, "", issues)
    return expanded, issues
