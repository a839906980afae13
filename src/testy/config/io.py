import copy
import logging
import os
import pathlib
from collections.abc import Mapping
from typing import Any, cast

import pydantic
import ruamel.yaml

from testy import exceptions
from testy.config import models

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "TESTY_CONFIG"


def get_user_config_path() -> pathlib.Path:
    """Get user-level config path (~/.config/testy/config.yaml)."""
    return pathlib.Path.home() / ".config" / "testy" / "config.yaml"


def get_config_path() -> pathlib.Path:
    """Config file to read: $TESTY_CONFIG if set, else the user-level file."""
    if override := os.environ.get(CONFIG_ENV_VAR):
        return pathlib.Path(override).expanduser()
    return get_user_config_path()


def load_config_file(path: pathlib.Path) -> dict[str, Any]:
    """Load YAML config as plain dict, returns empty dict if missing."""
    if not path.exists():
        return {}

    try:
        yaml = ruamel.yaml.YAML(typ="safe")
        with path.open() as f:
            data = yaml.load(f)
    except ruamel.yaml.YAMLError as e:
        raise exceptions.ConfigError(f"Invalid YAML in {path}: {e}") from e
    except PermissionError:
        raise exceptions.ConfigError(f"Permission denied reading {path}") from None
    except OSError as e:
        raise exceptions.ConfigError(f"Error reading {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise exceptions.ConfigError(f"Expected a mapping at the top of {path}")
    return cast("dict[str, Any]", data)


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Merge override into base, recursively for nested dicts."""
    result = copy.deepcopy(dict(base))
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            nested_override = cast("dict[str, Any]", val)
            result[key] = deep_merge(result[key], nested_override)
        else:
            result[key] = copy.deepcopy(val)
    return result


def load_config(
    overrides: Mapping[str, Any] | None = None,
    path: pathlib.Path | None = None,
) -> models.TestyConfig:
    """Build the immutable startup config: defaults < config file < overrides.

    Args:
        overrides: Nested values from command-line flags. ``None`` leaves are
            ignored so unset flags never mask file values.
        path: Config file to read instead of the default lookup.
    """
    defaults = models.TestyConfig.get_default().model_dump()

    config_path = path if path is not None else get_config_path()
    file_data = load_config_file(config_path)
    if file_data:
        logger.debug(f"Loaded config from {config_path}")
    merged = deep_merge(defaults, file_data)

    if overrides:
        merged = deep_merge(merged, _drop_unset(overrides))

    try:
        return models.TestyConfig.model_validate(merged)
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise exceptions.ConfigError(f"Invalid configuration: {problems}") from e


def _drop_unset(data: Mapping[str, Any]) -> dict[str, Any]:
    result = dict[str, Any]()
    for key, val in data.items():
        if val is None:
            continue
        if isinstance(val, Mapping):
            nested = _drop_unset(cast("Mapping[str, Any]", val))
            if nested:
                result[key] = nested
        else:
            result[key] = val
    return result
