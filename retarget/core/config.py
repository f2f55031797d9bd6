"""Configuration management system"""

import copy
from pathlib import Path
from typing import Any, Dict, Optional
import yaml

from .errors import ConfigurationError


# Built-in values, the YAML file is merged over these
DEFAULTS: Dict[str, Any] = {
    "app": {"name": "Landmark Retarget", "log_level": "INFO"},
    "filters": {
        "pose": {"type": "Kalman", "R": 1.0, "Q": 1.0},
        "world_pose": {"type": "Kalman", "R": 1.0, "Q": 1.0},
        "face": {"type": "Kalman", "R": 1.0, "Q": 10.0, "gaussian_sigma": 2.0},
        "hand": {"type": "Kalman", "R": 1.0, "Q": 10.0},
        "wrist_offset": {"type": "Kalman", "R": 0.1, "Q": 2.0},
    },
    "retarget": {
        "visibility_threshold": 0.65,
        "hand_position_scaling": 0.8,
        "head_neck_ratio": 0.6,
        "twist_coefficient": 0.5,
    },
    "bones": {
        "iris_link_lr": True,
        "iris_lock_x": True,
        "lock_finger": False,
        "lock_arm": False,
        "lock_leg": False,
        "reset_invisible": False,
    },
    "worker": {"poll_timeout": 0.1},
    "export": {"output_dir": "./output", "precision": 6},
}

# (key, lower, upper), bounds inclusive, None for open
_NUMERIC_RANGES = (
    ("retarget.visibility_threshold", 0.0, 1.0),
    ("retarget.head_neck_ratio", 0.0, 1.0),
    ("retarget.twist_coefficient", 0.0, 1.0),
    ("retarget.hand_position_scaling", 0.0, None),
    ("worker.poll_timeout", 0.0, None),
)


def _deep_merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Centralized configuration manager with dot-notation access."""

    _instance: Optional["Config"] = None
    _config: dict = {}

    def __new__(cls, config_path: Optional[str] = None):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[str] = None):
        if self._initialized and config_path is None:
            return

        if config_path is None:
            config_path = self._find_config()

        self._load(config_path)
        self._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Forget the shared instance so the next Config() reloads from disk."""
        cls._instance = None

    def _find_config(self) -> str:
        """Find config.yaml in the working directory or above the package."""
        candidates = [Path.cwd() / "config.yaml"]
        current = Path(__file__).parent
        for _ in range(3):
            current = current.parent
            candidates.append(current / "config.yaml")

        for candidate in candidates:
            if candidate.exists():
                return str(candidate)
        raise FileNotFoundError("config.yaml not found")

    def _load(self, config_path: str) -> None:
        """Load YAML, merge it over the defaults and validate."""
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Top level of {config_path} must be a mapping, got {type(data).__name__}"
            )
        self._config = _deep_merge(DEFAULTS, data)
        self._config_path = config_path
        self.validate()

    def validate(self) -> None:
        """
        Check value ranges and option types.

        Raises:
            ConfigurationError: naming the first offending key
        """
        for key, lower, upper in _NUMERIC_RANGES:
            value = self.get(key)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigurationError(f"{key} must be a number, got {value!r}")
            if (lower is not None and value < lower) or (upper is not None and value > upper):
                raise ConfigurationError(f"{key}={value} outside [{lower}, {upper}]")

        for name, value in self.bones.items():
            if not isinstance(value, bool):
                raise ConfigurationError(f"bones.{name} must be true or false, got {value!r}")

        precision = self.get("export.precision")
        if precision is not None and (not isinstance(precision, int) or precision < 0):
            raise ConfigurationError(f"export.precision must be a non-negative integer, got {precision!r}")

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load(self._config_path)

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get config value using dot notation.

        Example:
            config.get("retarget.visibility_threshold", 0.65)
            config.get("filters.face.type")
        """
        value = self._config
        for k in key.split("."):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """Set config value using dot notation (runtime only, not persisted)."""
        keys = key.split(".")
        section = self._config
        for k in keys[:-1]:
            if not isinstance(section.get(k), dict):
                section[k] = {}
            section = section[k]
        section[keys[-1]] = value

    def save(self, path: Optional[str] = None) -> None:
        """Save the merged configuration to file."""
        save_path = path or self._config_path
        with open(save_path, "w") as f:
            yaml.safe_dump(self._config, f, default_flow_style=False)

    @property
    def path(self) -> str:
        return self._config_path

    @property
    def app(self) -> dict:
        return self._config.get("app", {})

    @property
    def filters(self) -> dict:
        return self._config.get("filters", {})

    @property
    def retarget(self) -> dict:
        return self._config.get("retarget", {})

    @property
    def bones(self) -> dict:
        return self._config.get("bones", {})

    @property
    def worker(self) -> dict:
        return self._config.get("worker", {})

    @property
    def export(self) -> dict:
        return self._config.get("export", {})

    def __repr__(self) -> str:
        return f"Config({self._config_path})"
