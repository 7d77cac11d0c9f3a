"""Define typed configuration for the texture loader.

`LoaderSettings` carries per-call import options; `LoaderConfig` wraps them
with logging and export settings and handles YAML load/save/validation.
"""

import dataclasses
import logging
import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import yaml

from .core.formats import ImageFormat
from .core.mipchain import MAX_MIPMAP_COUNT

logger = logging.getLogger("texture_loader.config")

_SUPPORTED_CONFIG_VERSION = 1
_EXPORT_FORMATS = {"png", "dds"}


@dataclass
class LoaderSettings:
    """Settings used by the image loader."""

    # Create a linear (non-sRGB) texture. Only used when creating new textures.
    linear: bool = False
    # Drop the CPU copy of the pixels after apply().
    mark_non_readable: bool = False
    generate_mipmap: bool = True
    # Only used when creating new textures; loading into an existing texture
    # always builds the full chain.
    auto_mipmap_count: bool = True
    # Mip count including the base level; must be >= 2 when used.
    mipmap_count: int = 2
    format: ImageFormat = ImageFormat.UNKNOWN
    log_exception: bool = True
    max_workers: Optional[int] = None
    transfer_batch_rows: int = 16
    mipmap_batch_size: int = 1024

    @classmethod
    def default(cls) -> "LoaderSettings":
        return cls()

    def validate(self) -> List[str]:
        """Return a list of validation errors (empty when valid)."""
        errors = []
        if not isinstance(self.format, ImageFormat):
            errors.append(f"format must be an ImageFormat, got {self.format!r}")
        if not self.auto_mipmap_count and self.mipmap_count < 2:
            errors.append("mipmap_count must be >= 2 when auto_mipmap_count is off")
        if self.mipmap_count > MAX_MIPMAP_COUNT:
            logger.warning(
                "mipmap_count=%d exceeds the maximum chain length %d and will be clamped.",
                self.mipmap_count, MAX_MIPMAP_COUNT,
            )
        if self.max_workers is not None and not (0 <= self.max_workers <= 128):
            errors.append("max_workers must be in [0, 128] (0 = run inline)")
        if self.transfer_batch_rows < 1:
            errors.append("transfer_batch_rows must be >= 1")
        if self.mipmap_batch_size < 1:
            errors.append("mipmap_batch_size must be >= 1")
        return errors


@dataclass
class LoaderConfig:
    """Top-level configuration for the CLI and batch imports."""

    config_version: int = 1
    log_level: str = "INFO"
    log_file: str = ""
    output_dir: str = "./textures_out"
    export_formats: List[str] = field(default_factory=lambda: ["png"])
    loader: LoaderSettings = field(default_factory=LoaderSettings)

    @classmethod
    def from_yaml(cls, path: str) -> "LoaderConfig":
        """Load configuration from YAML or return defaults."""
        if not os.path.exists(path):
            logger.info("Config file '%s' not found. Using defaults.", path)
            config = cls()
            config.validate()
            return config
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Failed to parse YAML config '{path}': {exc}") from exc
        if not isinstance(data, dict):
            raise ValueError(
                f"Config file '{path}' must contain a YAML mapping, "
                f"got {type(data).__name__}"
            )
        yaml_version = data.get("config_version", 1)
        if isinstance(yaml_version, int) and yaml_version > _SUPPORTED_CONFIG_VERSION:
            logger.warning(
                "Config file '%s' has config_version=%d, but this build only "
                "supports up to version %d. Some settings may be ignored.",
                path, yaml_version, _SUPPORTED_CONFIG_VERSION,
            )
        config = cls()
        _merge_dict_to_dataclass(config, data)
        try:
            config.validate()
        except ValueError as exc:
            raise ValueError(f"{path}: {exc}") from exc
        return config

    def to_dict(self) -> dict:
        data = dataclasses.asdict(self)
        data["loader"]["format"] = self.loader.format.value
        return data

    def to_yaml(self, path: str):
        """Write configuration to a YAML file atomically."""
        data = self.to_dict()
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        ext = os.path.splitext(path)[1]
        tmp_path = f"{path}.tmp.{os.getpid()}.{threading.get_ident()}{ext}"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                yaml.dump(data, f, default_flow_style=False, sort_keys=False)
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass

    def validate(self):
        """Validate configuration values. Raises ValueError on invalid config."""
        errors = []

        valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if not isinstance(self.log_level, str) or self.log_level.upper() not in valid_log_levels:
            errors.append(
                f"log_level must be one of {sorted(valid_log_levels)}, "
                f"got '{self.log_level}'"
            )
        if not self.output_dir:
            errors.append("output_dir must not be empty")
        unknown = {fmt.lower() for fmt in self.export_formats} - _EXPORT_FORMATS
        if unknown:
            errors.append(
                f"export_formats contains unsupported entries {sorted(unknown)}; "
                f"valid: {sorted(_EXPORT_FORMATS)}"
            )
        errors.extend(f"loader.{e}" for e in self.loader.validate())

        if errors:
            raise ValueError(
                "Configuration validation failed:\n" +
                "\n".join(f"  - {e}" for e in errors)
            )


def _coerce_enum(enum_cls, value, full_key: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        logger.warning(
            f"Config value {value!r} for '{full_key}' is not a valid "
            f"{enum_cls.__name__}. Using default value."
        )
        return None


def _merge_dict_to_dataclass(obj, data: dict, _path: str = ""):
    for key, value in data.items():
        full_key = f"{_path}{key}"
        if not hasattr(obj, key):
            logger.warning(f"Unknown config key ignored: '{full_key}'")
            continue
        field_val = getattr(obj, key)
        if dataclasses.is_dataclass(field_val) and isinstance(value, dict):
            _merge_dict_to_dataclass(field_val, value, f"{full_key}.")
            continue
        if isinstance(field_val, Enum):
            coerced = _coerce_enum(type(field_val), value, full_key)
            if coerced is not None:
                setattr(obj, key, coerced)
            continue
        # Optional fields default to None and accept any int.
        if field_val is None:
            if value is None or isinstance(value, int):
                setattr(obj, key, value)
            else:
                logger.warning(
                    f"Config type mismatch for '{full_key}': expected int or null, "
                    f"got {type(value).__name__} ({value!r}). Using default value."
                )
            continue
        if value is None:
            logger.warning(
                f"Config key '{full_key}' is null but field default is "
                f"{type(field_val).__name__}. Using default value."
            )
            continue
        expected_type = type(field_val)
        # Allow int->float and exact float->int promotion; bool is not an int here.
        if (isinstance(value, bool) != (expected_type is bool)
                or (not isinstance(value, expected_type)
                    and not (expected_type is float and isinstance(value, int))
                    and not (expected_type is int and isinstance(value, float)
                             and value == int(value)))):
            logger.warning(
                f"Config type mismatch for '{full_key}': "
                f"expected {expected_type.__name__}, "
                f"got {type(value).__name__} ({value!r}). "
                f"Using default value."
            )
            continue
        if expected_type is int and isinstance(value, float):
            value = int(value)
        setattr(obj, key, value)
