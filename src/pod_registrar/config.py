"""
Configuration for the pod registrar.

This module provides:
- Dataclass configuration sections with dictionary loading and validation
- Environment-based overrides for every section
- Optional YAML configuration files with ${VAR:-default} expansion

Configuration is loaded once at process start and passed by reference into
the components; nothing re-reads the environment afterwards.
"""

import builtins
import logging
import os
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, TypeVar

import yaml

from .errors import ConfigurationError, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DISCOVERY_ADDRESS = "service-eye.msp:9443"
DEFAULT_RENEW_INTERVAL = 30.0

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def _split_nodes(value: Any) -> builtins.list[str]:
    if isinstance(value, (list, tuple)):
        items = [str(item) for item in value]
    else:
        items = str(value).split(",")
    return [item.strip() for item in items if item.strip()]


@dataclass
class BaseConfigSection(ABC):
    """Base class for configuration sections."""

    @classmethod
    @abstractmethod
    def from_dict(cls: builtins.type[T], data: builtins.dict[str, Any]) -> T:  # type: ignore[misc]
        """Create instance from dictionary."""

    def validate(self) -> None:
        """Validate configuration section."""


@dataclass
class DiscoveryConfig(BaseConfigSection):
    """Process-wide discovery client configuration shared by every handle."""

    nodes: builtins.list[str] = field(
        default_factory=lambda: [DEFAULT_DISCOVERY_ADDRESS]
    )
    zone: str = ""
    env: str = ""
    region: str = ""
    renew_interval: float = DEFAULT_RENEW_INTERVAL
    backend: str = "memory"

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "DiscoveryConfig":
        nodes = _split_nodes(data.get("nodes") or DEFAULT_DISCOVERY_ADDRESS)
        return cls(
            nodes=nodes or [DEFAULT_DISCOVERY_ADDRESS],
            zone=str(data.get("zone", "")),
            env=str(data.get("env", "")),
            region=str(data.get("region", "")),
            renew_interval=float(data.get("renew_interval", DEFAULT_RENEW_INTERVAL)),
            backend=str(data.get("backend", "memory")),
        )

    def validate(self) -> None:
        if not self.nodes:
            raise ValidationError("At least one discovery node is required")
        if self.renew_interval <= 0:
            raise ValidationError("Renew interval must be positive")
        if not self.backend:
            raise ValidationError("Discovery backend is required")


@dataclass
class HealthProbeConfig(BaseConfigSection):
    """HTTP health probe configuration."""

    scheme: str = "http"
    port: int = 80
    path: str = "/healthcheck"
    timeout: float = 1.0
    success_status: int = 200
    # Inverted check: a success status marks the pod unhealthy.
    legacy_polarity: bool = False

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "HealthProbeConfig":
        return cls(
            scheme=data.get("scheme", "http"),
            port=int(data.get("port", 80)),
            path=data.get("path", "/healthcheck"),
            timeout=float(data.get("timeout", 1.0)),
            success_status=int(data.get("success_status", 200)),
            legacy_polarity=_as_bool(data.get("legacy_polarity", False)),
        )

    def validate(self) -> None:
        if self.scheme not in ("http", "https"):
            raise ValidationError(f"Invalid health probe scheme: {self.scheme}")
        if self.port <= 0 or self.port > 65535:
            raise ValidationError(f"Invalid port number: {self.port}")
        if self.timeout <= 0:
            raise ValidationError("Health probe timeout must be positive")
        if not self.path.startswith("/"):
            raise ValidationError("Health probe path must start with '/'")


@dataclass
class RetryQueueConfig(BaseConfigSection):
    """Retry queue rate limiting and worker configuration."""

    base_delay: float = 0.005
    max_delay: float = 1000.0
    qps: float = 10.0
    burst: int = 100
    workers: int = 1
    max_retries: int = 0  # 0 retries forever

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "RetryQueueConfig":
        return cls(
            base_delay=float(data.get("base_delay", 0.005)),
            max_delay=float(data.get("max_delay", 1000.0)),
            qps=float(data.get("qps", 10.0)),
            burst=int(data.get("burst", 100)),
            workers=int(data.get("workers", 1)),
            max_retries=int(data.get("max_retries", 0)),
        )

    def validate(self) -> None:
        if self.base_delay < 0 or self.max_delay < self.base_delay:
            raise ValidationError("Retry delays must satisfy 0 <= base_delay <= max_delay")
        if self.qps <= 0:
            raise ValidationError("Retry qps must be positive")
        if self.burst <= 0:
            raise ValidationError("Retry burst must be positive")
        if self.workers <= 0:
            raise ValidationError("At least one retry worker is required")
        if self.max_retries < 0:
            raise ValidationError("max_retries cannot be negative")


@dataclass
class KubernetesConfig(BaseConfigSection):
    """Kubernetes API access configuration."""

    namespace: str = ""
    in_cluster: bool = False
    kubeconfig: str | None = None
    watch_timeout: int = 300

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "KubernetesConfig":
        return cls(
            namespace=data.get("namespace", "") or "",
            in_cluster=_as_bool(data.get("in_cluster", False)),
            kubeconfig=data.get("kubeconfig") or None,
            watch_timeout=int(data.get("watch_timeout", 300)),
        )

    def validate(self) -> None:
        if self.watch_timeout <= 0:
            raise ValidationError("Watch timeout must be positive")


@dataclass
class StatusApiConfig(BaseConfigSection):
    """Read-only status API configuration."""

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 9000

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "StatusApiConfig":
        return cls(
            enabled=_as_bool(data.get("enabled", True)),
            host=data.get("host", "0.0.0.0"),
            port=int(data.get("port", 9000)),
        )

    def validate(self) -> None:
        if self.port <= 0 or self.port > 65535:
            raise ValidationError(f"Invalid port number: {self.port}")


@dataclass
class LoggingConfig(BaseConfigSection):
    """Logging configuration section."""

    level: str = "INFO"
    format: str = "json"
    service_name: str = "pod-registrar"
    enable_trace: bool = True

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "LoggingConfig":
        return cls(
            level=str(data.get("level", "INFO")).upper(),
            format=data.get("format", "json"),
            service_name=data.get("service_name", "pod-registrar"),
            enable_trace=_as_bool(data.get("enable_trace", True)),
        )

    def validate(self) -> None:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", "OFF"]
        if self.level not in valid_levels:
            raise ValidationError(f"Invalid log level: {self.level}")
        if self.format not in ("json", "text"):
            raise ValidationError(f"Invalid log format: {self.format}")


# Environment variable -> (section, key)
ENV_OVERRIDES: builtins.dict[str, builtins.tuple[str, str]] = {
    "DISCOVERY_ADDRESS": ("discovery", "nodes"),
    "ZONE": ("discovery", "zone"),
    "ENV": ("discovery", "env"),
    "REGION": ("discovery", "region"),
    "DISCOVERY_BACKEND": ("discovery", "backend"),
    "HEALTH_CHECK_PATH": ("health_probe", "path"),
    "HEALTH_CHECK_PORT": ("health_probe", "port"),
    "HEALTH_CHECK_TIMEOUT": ("health_probe", "timeout"),
    "HEALTH_CHECK_LEGACY_POLARITY": ("health_probe", "legacy_polarity"),
    "RETRY_WORKERS": ("retry", "workers"),
    "RETRY_MAX_RETRIES": ("retry", "max_retries"),
    "NAMESPACE": ("kubernetes", "namespace"),
    "IN_CLUSTER": ("kubernetes", "in_cluster"),
    "KUBECONFIG": ("kubernetes", "kubeconfig"),
    "API_HOST": ("api", "host"),
    "API_PORT": ("api", "port"),
    "LOG_LEVEL": ("logging", "level"),
    "LOG_FORMAT": ("logging", "format"),
}


@dataclass
class ControllerConfig:
    """Complete controller configuration."""

    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    health_probe: HealthProbeConfig = field(default_factory=HealthProbeConfig)
    retry: RetryQueueConfig = field(default_factory=RetryQueueConfig)
    kubernetes: KubernetesConfig = field(default_factory=KubernetesConfig)
    api: StatusApiConfig = field(default_factory=StatusApiConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "ControllerConfig":
        return cls(
            discovery=DiscoveryConfig.from_dict(data.get("discovery") or {}),
            health_probe=HealthProbeConfig.from_dict(data.get("health_probe") or {}),
            retry=RetryQueueConfig.from_dict(data.get("retry") or {}),
            kubernetes=KubernetesConfig.from_dict(data.get("kubernetes") or {}),
            api=StatusApiConfig.from_dict(data.get("api") or {}),
            logging=LoggingConfig.from_dict(data.get("logging") or {}),
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ControllerConfig":
        return load_config(None, environ)

    def validate(self) -> None:
        for section in (
            self.discovery,
            self.health_probe,
            self.retry,
            self.kubernetes,
            self.api,
            self.logging,
        ):
            section.validate()

    def to_dict(self) -> builtins.dict[str, Any]:
        return asdict(self)


def load_config(
    path: str | Path | None = None, environ: Mapping[str, str] | None = None
) -> ControllerConfig:
    """Load configuration from an optional YAML file overlaid with the environment."""
    environ = os.environ if environ is None else environ

    raw: builtins.dict[str, Any] = {}
    if path is not None:
        raw = _expand_env_vars(_load_yaml_file(Path(path)), environ)
        logger.debug("Loaded configuration file %s", path)

    raw = _deep_merge(raw, _env_overrides(environ))

    config = ControllerConfig.from_dict(raw)
    config.validate()
    return config


def _load_yaml_file(path: Path) -> builtins.dict[str, Any]:
    """Load YAML configuration file."""
    try:
        with open(path, encoding="utf-8") as file:
            data = yaml.safe_load(file) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Error parsing YAML file {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Error reading file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")
    return data


def _env_overrides(environ: Mapping[str, str]) -> builtins.dict[str, Any]:
    overrides: builtins.dict[str, builtins.dict[str, Any]] = {}
    for var_name, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(var_name)
        if value is None or value == "":
            continue
        overrides.setdefault(section, {})[key] = value
    return overrides


def _deep_merge(
    base: builtins.dict[str, Any], override: builtins.dict[str, Any]
) -> builtins.dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _expand_env_vars(obj: Any, environ: Mapping[str, str]) -> Any:
    """Recursively expand environment variables in configuration."""
    if isinstance(obj, dict):
        return {key: _expand_env_vars(value, environ) for key, value in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_vars(item, environ) for item in obj]
    if isinstance(obj, str):
        return _expand_env_var_string(obj, environ)
    return obj


def _expand_env_var_string(value: str, environ: Mapping[str, str]) -> str:
    """Expand environment variables in a string using ${VAR:-default} syntax."""
    pattern = r"\$\{([^}]+)\}"

    def replace_var(match):
        var_expr = match.group(1)
        if ":-" in var_expr:
            var_name, default_value = var_expr.split(":-", 1)
            return environ.get(var_name) or default_value
        return environ.get(var_expr, "")

    return re.sub(pattern, replace_var, value)
