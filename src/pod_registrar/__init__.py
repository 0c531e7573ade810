"""
Pod Registrar

Keeps an external service registry in sync with the pods of a Kubernetes
cluster: pods that become Running are registered, pods that leave Running or
are deleted are cancelled, and failed operations are retried through a
rate-limited, deduplicating queue.

Key Components:
- Instance Descriptor Builder: pure mapping from a pod snapshot to a registry record
- Registrar: one discovery client handle per pod, register / cancel / health-check-or-cancel
- Event Dispatcher: phase-transition state machine over add / update / delete notifications
- Retry Queue: deduplicating, rate-limited work queue replayed by retry workers

Usage:
    from pod_registrar import ControllerConfig, RegistrarController

    config = ControllerConfig.from_env()
    controller = RegistrarController(config)
    await controller.run()
"""

from .clients import (
    ClientFactory,
    DiscoveryClient,
    InMemoryDiscoveryClient,
    InMemoryRegistry,
    in_memory_factory,
    resolve_client_factory,
)
from .config import (
    ControllerConfig,
    DiscoveryConfig,
    HealthProbeConfig,
    KubernetesConfig,
    LoggingConfig,
    RetryQueueConfig,
    StatusApiConfig,
    load_config,
)
from .controller import RegistrarController
from .core import (
    ContainerSpec,
    EnvVar,
    EventKind,
    InstanceDescriptor,
    InstanceStatus,
    PodEvent,
    PodPhase,
    PodSnapshot,
    WorkAction,
    WorkItem,
)
from .descriptor import build_descriptor
from .dispatcher import DispatchOutcome, EventDispatcher
from .errors import (
    ConfigurationError,
    HandleCreationError,
    RegistrarError,
    RegistrationError,
    RegistryClientError,
    ValidationError,
)
from .health import HealthProbe, ProbeResult
from .queue import RetryQueue, RetryWorker
from .registrar import Registrar

__version__ = "0.1.0"

__all__ = [
    # Core types
    "PodPhase",
    "PodSnapshot",
    "ContainerSpec",
    "EnvVar",
    "InstanceStatus",
    "InstanceDescriptor",
    "WorkAction",
    "WorkItem",
    "EventKind",
    "PodEvent",
    # Configuration
    "ControllerConfig",
    "DiscoveryConfig",
    "HealthProbeConfig",
    "RetryQueueConfig",
    "KubernetesConfig",
    "StatusApiConfig",
    "LoggingConfig",
    "load_config",
    # Registry clients
    "DiscoveryClient",
    "ClientFactory",
    "InMemoryRegistry",
    "InMemoryDiscoveryClient",
    "in_memory_factory",
    "resolve_client_factory",
    # Sync engine
    "build_descriptor",
    "HealthProbe",
    "ProbeResult",
    "Registrar",
    "EventDispatcher",
    "DispatchOutcome",
    "RetryQueue",
    "RetryWorker",
    "RegistrarController",
    # Errors
    "RegistrarError",
    "HandleCreationError",
    "RegistrationError",
    "RegistryClientError",
    "ConfigurationError",
    "ValidationError",
]
