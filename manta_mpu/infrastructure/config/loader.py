"""
Configuration file and environment handling.

Settings come from an optional YAML or JSON file, then environment variables
on top. The conventional MANTA_URL/TRITON_* variables are honoured, and the
MANTA_MPU_* variables override them. The loaded ApplicationConfig is passed
explicitly to whatever needs it.
"""

import json
import os
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, NamedTuple, Optional

import yaml

from .models import ApplicationConfig

ENV_PREFIX = "MANTA_MPU_"


def parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on", "enabled")


class EnvOverride(NamedTuple):
    variable: str
    key: str
    convert: Callable[[str], Any] = str


# Applied in order; later entries win over earlier ones for the same key.
ENV_OVERRIDES = (
    EnvOverride("MANTA_URL", "service.url"),
    EnvOverride("TRITON_ACCOUNT", "service.account"),
    EnvOverride("TRITON_USER", "service.user"),
    EnvOverride("TRITON_KEY_ID", "service.key_id"),
    EnvOverride("TRITON_KEY_MATERIAL", "service.key_material"),
    EnvOverride(f"{ENV_PREFIX}URL", "service.url"),
    EnvOverride(f"{ENV_PREFIX}ACCOUNT", "service.account"),
    EnvOverride(f"{ENV_PREFIX}USER", "service.user"),
    EnvOverride(f"{ENV_PREFIX}KEY_ID", "service.key_id"),
    EnvOverride(f"{ENV_PREFIX}KEY_MATERIAL", "service.key_material"),
    EnvOverride(f"{ENV_PREFIX}TIMEOUT", "service.timeout", float),
    EnvOverride(f"{ENV_PREFIX}VERIFY_TLS", "service.verify_tls", parse_bool),
    EnvOverride(f"{ENV_PREFIX}CONCURRENCY", "upload.max_concurrent_parts", int),
    EnvOverride(f"{ENV_PREFIX}PART_SIZE", "upload.part_size", int),
    EnvOverride(f"{ENV_PREFIX}DURABILITY", "upload.default_durability", int),
    EnvOverride(f"{ENV_PREFIX}MAX_ATTEMPTS", "retry.max_attempts", int),
    EnvOverride(f"{ENV_PREFIX}MAX_ELAPSED", "retry.max_elapsed", float),
    EnvOverride(f"{ENV_PREFIX}LOG_LEVEL", "logging.level"),
    EnvOverride(f"{ENV_PREFIX}LOG_DIR", "logging.log_directory"),
    EnvOverride(f"{ENV_PREFIX}DEBUG", "debug", parse_bool),
)

_FORMATS = {
    ".yaml": "yaml",
    ".yml": "yaml",
    ".json": "json",
}


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge override into a copy of base, recursing into nested sections."""
    merged = dict(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


def _assign(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    *sections, leaf = dotted_key.split(".")
    for section in sections:
        target = target.setdefault(section, {})
    target[leaf] = value


class ConfigLoader:
    """Builds an ApplicationConfig from a file and the environment."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        """
        Args:
            environ: Environment to read; os.environ if None
        """
        self._environ = os.environ if environ is None else environ

    def load_config(self, config_file: Optional[str] = None) -> ApplicationConfig:
        """
        Load and validate configuration.

        Args:
            config_file: Optional YAML or JSON file

        Raises:
            FileNotFoundError: If config_file does not exist
            ValueError: For unreadable files or invalid values
        """
        data = self.read_file(config_file) if config_file else {}
        data = deep_merge(data, self.environment_overrides())

        config = ApplicationConfig.from_dict(data)
        config.config_file_path = config_file
        return config

    def save_config(self, config: ApplicationConfig, file_path: str, format: str = "yaml") -> None:
        """
        Write configuration to a file.

        Key material is never written out.
        """
        fmt = format.lower()
        if fmt not in ("yaml", "json"):
            raise ValueError(f"Unsupported format: {format}")

        data = config.to_dict()
        data.pop("config_file_path", None)
        data["service"].pop("key_material", None)

        with open(file_path, "w", encoding="utf-8") as f:
            if fmt == "yaml":
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
            else:
                json.dump(data, f, indent=2)

    def read_file(self, file_path: str) -> Dict[str, Any]:
        """Parse a configuration file into a plain dictionary."""
        path = Path(file_path)
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found: {file_path}")

        fmt = _FORMATS.get(path.suffix.lower())
        if fmt is None:
            raise ValueError(f"Unsupported configuration file format: {path.suffix}")

        text = path.read_text(encoding="utf-8")
        try:
            data = yaml.safe_load(text) if fmt == "yaml" else json.loads(text)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {file_path}: {e}") from e
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {file_path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ValueError(f"{file_path} must contain a mapping at the top level")
        return data

    def environment_overrides(self) -> Dict[str, Any]:
        """Collect configuration values set through environment variables."""
        overrides: Dict[str, Any] = {}
        for override in ENV_OVERRIDES:
            raw = self._environ.get(override.variable)
            if not raw:
                continue
            try:
                value = override.convert(raw)
            except (TypeError, ValueError) as e:
                raise ValueError(f"Invalid value for {override.variable}: {raw!r} ({e})") from e
            _assign(overrides, override.key, value)
        return overrides
