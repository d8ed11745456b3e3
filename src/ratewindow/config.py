"""Configuration file loader for counter stores.

This module loads store configurations from TOML files, with support for
environment variable expansion. Loaded configs are returned to the caller;
nothing is registered globally, so independently configured stores can
coexist in one process.

Example TOML:
    [stores.main]
    engine = "redis"
    url = "${REDIS_URL:-redis://localhost:6379/0}"
    key_prefix = "api"
    max_retry = 3
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import tomllib

from ratewindow.exceptions import ConfigValidationError
from ratewindow.validation import validate_store_config

logger = logging.getLogger(__name__)

# ${VAR_NAME:-default_value}
_DEFAULT_PATTERN = re.compile(r"\$\{([^}:]+):-([^}]*)\}")


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand environment variables in configuration values.

    Supports ${VAR_NAME} and ${VAR_NAME:-default} syntax (bash-like default
    values). Expanded values stay strings; numeric fields are converted
    against their schema by validate_store_config().

    Example:
        >>> _expand_env_vars("redis://${REDIS_HOST}:6379")
        "redis://localhost:6379"  # If REDIS_HOST=localhost
        >>> _expand_env_vars("${RETRIES:-3}")
        "3"
    """
    if isinstance(obj, dict):
        return {key: _expand_env_vars(value) for key, value in obj.items()}

    if isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]

    if isinstance(obj, str):
        if "$" not in obj:
            return obj

        result = _DEFAULT_PATTERN.sub(
            lambda match: os.environ.get(match.group(1), match.group(2)), obj
        )
        return os.path.expandvars(result)

    return obj


def _load_stores(stores: Any, config_path: Path) -> dict[str, Any]:
    """Validate every [stores.<id>] table and build its config dataclass."""
    if not isinstance(stores, dict):
        raise ConfigValidationError(
            "stores section must be a dictionary",
            field="stores",
            expected="dict",
            received=type(stores).__name__,
        )

    logger.info("Loading %d stores from config file %s", len(stores), config_path)

    configs: dict[str, Any] = {}
    for store_id, store_config in stores.items():
        if not isinstance(store_config, dict):
            raise ConfigValidationError(
                f"Store '{store_id}' configuration must be a dictionary",
                field=f"stores.{store_id}",
                expected="dict",
                received=type(store_config).__name__,
            )

        engine = store_config.get("engine")
        if not engine:
            raise ConfigValidationError(
                f"Store '{store_id}' missing required field 'engine'",
                field=f"stores.{store_id}.engine",
                expected="engine name",
                received="missing",
            )

        params = {k: v for k, v in store_config.items() if k != "engine"}
        try:
            configs[store_id] = validate_store_config(engine, params)
        except ConfigValidationError as e:
            raise ConfigValidationError(
                f"Failed to configure store '{store_id}': {e}",
                field=f"stores.{store_id}.{e.field}" if e.field else f"stores.{store_id}",
                expected=e.expected,
                received=e.received,
            ) from e

        logger.info("Store '%s' loaded from file (engine=%s)", store_id, engine)

    return configs


def load_config(config_path: str | Path) -> dict[str, Any]:
    """Load counter store configurations from a TOML file.

    Args:
        config_path: Path to TOML configuration file

    Returns:
        Mapping of store id to its config dataclass (e.g. RedisStoreConfig)

    Raises:
        FileNotFoundError: If config file doesn't exist
        ConfigValidationError: If the file is not valid TOML or a store is invalid

    Example:
        >>> configs = load_config("rate-window.toml")
        >>> store = create_store(configs["main"])
        >>> await store.initialize()
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "rb") as f:
            config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigValidationError(
            f"Failed to parse TOML file: {e}",
            field="config_file",
            expected="valid TOML",
            received=str(config_path),
        ) from e

    config = _expand_env_vars(config)
    configs = _load_stores(config.get("stores", {}), config_path)

    logger.info("Configuration loaded successfully: %d stores", len(configs))
    return configs
