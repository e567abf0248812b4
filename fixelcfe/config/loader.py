"""Configuration file loading utilities."""

import json
import logging
from dataclasses import asdict, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Type, TypeVar

import yaml

from fixelcfe.utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ConfigType = TypeVar('ConfigType')


def load_config_file(path: Path) -> Dict[str, Any]:
    """Load configuration from JSON or YAML file.

    Args:
        path: Path to configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If configuration file doesn't exist
        ConfigurationError: If file format is not supported or the file does
            not hold a mapping
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with path.open() as f:
        if path.suffix == ".json":
            data = json.load(f)
        elif path.suffix in [".yaml", ".yml"]:
            data = yaml.safe_load(f)
        else:
            raise ConfigurationError(
                f"Unsupported configuration file format: {path.suffix}. "
                f"Supported formats: .json, .yaml, .yml"
            )

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(
            f"Configuration file {path} must contain a mapping, "
            f"got {type(data).__name__}"
        )
    return data


def merge_configs(
    base: Dict[str, Any],
    override: Dict[str, Any]
) -> Dict[str, Any]:
    """Merge two configuration dictionaries.

    Values in `override` take precedence over values in `base`, except
    None values which mean "not given" (unset command-line flags).

    Args:
        base: Base configuration dictionary
        override: Override configuration dictionary

    Returns:
        Merged configuration dictionary
    """
    result = base.copy()

    for key, value in override.items():
        if value is None:
            continue
        result[key] = value

    return result


def config_from_dict(
    data: Dict[str, Any],
    config_class: Type[ConfigType]
) -> ConfigType:
    """Create configuration dataclass from dictionary.

    Only fields defined in the dataclass are used; unknown keys are
    reported and ignored. String paths become Path objects for fields typed
    as paths.

    Args:
        data: Dictionary with configuration parameters
        config_class: Dataclass type to instantiate

    Returns:
        Instance of config_class
    """
    if not is_dataclass(config_class):
        raise ConfigurationError(f"{config_class} is not a dataclass")

    field_types = {f.name: f.type for f in fields(config_class)}

    unknown = sorted(set(data) - set(field_types))
    if unknown:
        logger.warning(f"Ignoring unknown configuration keys: {unknown}")

    filtered_data = {}
    for key, value in data.items():
        if key not in field_types:
            continue
        if 'Path' in str(field_types[key]) and isinstance(value, str):
            filtered_data[key] = Path(value)
        else:
            filtered_data[key] = value

    return config_class(**filtered_data)


def save_config(config: Any, path: Path) -> None:
    """Save configuration to JSON file.

    Args:
        config: Configuration dictionary or dataclass instance
        path: Output path for JSON file
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    if is_dataclass(config) and not isinstance(config, type):
        config_dict = asdict(config)
    elif isinstance(config, dict):
        config_dict = config
    else:
        raise TypeError(f"Expected dict or dataclass, got {type(config)}")

    with path.open('w') as f:
        json.dump(make_serializable(config_dict), f, indent=2)


def make_serializable(obj: Any) -> Any:
    """Convert object to JSON-serializable format.

    Args:
        obj: Object to convert

    Returns:
        JSON-serializable version of object
    """
    if isinstance(obj, Path):
        return str(obj)
    elif isinstance(obj, dict):
        return {k: make_serializable(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [make_serializable(item) for item in obj]
    elif hasattr(obj, 'item') and callable(obj.item):
        # numpy scalars
        return obj.item()
    else:
        return obj
