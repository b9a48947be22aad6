"""
ZKADDR Configuration System

Unified configuration management with YAML files, environment variables,
validation, and runtime updates.

Configuration Sources (in order of precedence):
    1. Environment variables (ZKADDR_*)
    2. Runtime overrides
    3. User config file (~/.zkaddr/config.yaml)
    4. Project config file (./zkaddr.yaml)
    5. Default values

Proof parameters (MiMC rounds, repetitions) are part of a circuit's digest:
provers and verifiers must agree on them or every proof is rejected.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

T = TypeVar("T")


class ConfigError(Exception):
    """Configuration error."""
    pass


class ConfigValidationError(ConfigError):
    """Configuration validation error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Supports default values, environment variable binding
    and validation.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    secret: bool = False  # Don't log if True
    _value: Optional[T] = field(default=None, repr=False)

    def get(self) -> T:
        """Get the current value."""
        # Check environment variable first
        if self.env_var and self.env_var in os.environ:
            return self._coerce(os.environ[self.env_var])

        return self._value if self._value is not None else self.default

    def set(self, value: T) -> None:
        """Set the value with validation."""
        if isinstance(value, str) and not isinstance(self.default, str):
            value = self._coerce(value)
        if self.validator and not self.validator(value):
            raise ConfigValidationError(f"Invalid value for config: {value}")

        self._value = value

    def reset(self) -> None:
        """Drop any runtime override."""
        self._value = None

    def _coerce(self, value: str) -> T:
        """Coerce string value to target type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.lower() in ("true", "1", "yes", "on")  # type: ignore
        elif target_type == int:
            return int(value)  # type: ignore
        elif target_type == list:
            return [v.strip() for v in value.split(",") if v.strip()]  # type: ignore
        else:
            return value  # type: ignore


@dataclass
class ProofConfig:
    """Configuration for the proof engine."""
    repetitions: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=137,
        env_var="ZKADDR_PROOF_REPETITIONS",
        description="Parallel repetitions per proof (soundness error (2/3)^n)",
        validator=lambda x: 1 <= x <= 1024,
    ))
    mimc_rounds: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=91,
        env_var="ZKADDR_MIMC_ROUNDS",
        description="MiMC-7 rounds over the BN254 scalar field",
        validator=lambda x: 1 <= x <= 256,
    ))
    timeout_seconds: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=120,
        env_var="ZKADDR_PROOF_TIMEOUT",
        description="Proof generation timeout in seconds",
        validator=lambda x: x > 0,
    ))
    workers: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=0,
        env_var="ZKADDR_PROOF_WORKERS",
        description="Worker pool size (0 = available cores)",
        validator=lambda x: x >= 0,
    ))
    executor: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="process",
        env_var="ZKADDR_PROOF_EXECUTOR",
        description="Worker pool kind (process, thread)",
        validator=lambda x: x in ("process", "thread"),
    ))


@dataclass
class MerkleConfig:
    """Configuration for the Merkle registry."""
    root_window: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=1,
        env_var="ZKADDR_MERKLE_ROOT_WINDOW",
        description="Number of most recent roots accepted for verification",
        validator=lambda x: x >= 1,
    ))
    max_depth: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=32,
        env_var="ZKADDR_MERKLE_MAX_DEPTH",
        description="Maximum tree depth per universe",
        validator=lambda x: 1 <= x <= 64,
    ))


@dataclass
class CredentialConfig:
    """Configuration for credential issuance and verification."""
    clock_skew_seconds: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=60,
        env_var="ZKADDR_CREDENTIAL_CLOCK_SKEW",
        description="Allowed clock skew for issuance/expiry checks",
        validator=lambda x: x >= 0,
    ))
    default_validity_days: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=365,
        env_var="ZKADDR_CREDENTIAL_VALIDITY_DAYS",
        description="Default credential validity (0 = no expiry)",
        validator=lambda x: x >= 0,
    ))


@dataclass
class PIDConfig:
    """Configuration for the PID codec."""
    country_schema_path: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="",
        env_var="ZKADDR_COUNTRY_SCHEMAS",
        description="Country schema YAML (empty = packaged table)",
    ))


@dataclass
class ResolutionConfig:
    """Configuration for the resolution service."""
    token_ttl_seconds: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=300,
        env_var="ZKADDR_TOKEN_TTL",
        description="Access token lifetime in seconds",
        validator=lambda x: x > 0,
    ))
    max_request_age_seconds: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=600,
        env_var="ZKADDR_MAX_REQUEST_AGE",
        description="Maximum age of a resolution request timestamp",
        validator=lambda x: x > 0,
    ))


@dataclass
class ObservabilityConfig:
    """Configuration for Observability."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="ZKADDR_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="ZKADDR_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class ZkAddrConfig:
    """
    Root configuration for ZKADDR.

    Aggregates all component configurations and provides
    loading/saving functionality.
    """
    proof: ProofConfig = field(default_factory=ProofConfig)
    merkle: MerkleConfig = field(default_factory=MerkleConfig)
    credential: CredentialConfig = field(default_factory=CredentialConfig)
    pid: PIDConfig = field(default_factory=PIDConfig)
    resolution: ResolutionConfig = field(default_factory=ResolutionConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return "***" if obj.secret else obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        """Convert to YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False)


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.

    Thread-safe singleton that manages configuration lifecycle.
    """

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._config = ZkAddrConfig()
        self._config_paths: List[Path] = []
        self._initialized = True

    @property
    def config(self) -> ZkAddrConfig:
        """Get the current configuration."""
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(path) as f:
            data = yaml.safe_load(f)

        if data is not None and not isinstance(data, dict):
            raise ConfigError(f"Configuration file must be a mapping: {path}")
        if data:
            self._apply_dict(data)
            self._config_paths.append(path)

    def load_defaults(self) -> List[Path]:
        """Load default configuration files if they exist.

        Returns the files that were applied.
        """
        default_paths = [
            Path("zkaddr.yaml"),
            Path("config/zkaddr.yaml"),
            Path.home() / ".zkaddr" / "config.yaml",
        ]

        loaded = []
        for path in default_paths:
            if path.exists():
                self.load_from_file(path)
                loaded.append(path)
        return loaded

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        """Apply dictionary values to configuration."""
        def apply_to_config(config_obj: Any, values: Dict[str, Any], prefix: str) -> None:
            for key, value in values.items():
                if not hasattr(config_obj, key):
                    raise ConfigError(f"Unknown config key: {prefix}{key}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.set(value)
                elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                    apply_to_config(attr, value, f"{prefix}{key}.")

        apply_to_config(self._config, data, "")

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: config.set("proof.repetitions", 64)
        """
        attr = self._resolve(path)
        if not isinstance(attr, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        attr.set(value)

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: config.get("proof.mimc_rounds")
        """
        obj = self._resolve(path)
        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def _resolve(self, path: str) -> Any:
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        return obj

    def reset(self) -> None:
        """Drop all runtime overrides (environment bindings still apply)."""
        def reset_config(obj: Any) -> None:
            if isinstance(obj, ConfigValue):
                obj.reset()
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    reset_config(getattr(obj, field_name))

        reset_config(self._config)
        self._config_paths.clear()

    def validate(self) -> List[str]:
        """
        Validate all configuration values.

        Returns list of validation errors.
        """
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    value = obj.get()
                    if obj.validator and not obj.validator(value):
                        errors.append(f"{path}: validation failed for value {value}")
                except (TypeError, ValueError) as e:
                    errors.append(f"{path}: {e}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Export configuration schema for documentation."""
        schema: Dict[str, Any] = {"properties": {}}

        def extract_schema(obj: Any, properties: Dict[str, Any]) -> None:
            if isinstance(obj, ConfigValue):
                properties["type"] = type(obj.default).__name__
                properties["default"] = str(obj.default)
                properties["description"] = obj.description
                if obj.env_var:
                    properties["env_var"] = obj.env_var
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    properties[field_name] = {}
                    extract_schema(getattr(obj, field_name), properties[field_name])

        extract_schema(self._config, schema["properties"])
        return schema


def get_config() -> ZkAddrConfig:
    """Get the current ZKADDR configuration."""
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    """Get the configuration manager instance."""
    return ConfigManager()
