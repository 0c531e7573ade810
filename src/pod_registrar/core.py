"""
Core Registrar Abstractions

Fundamental types shared by the registrar, the event dispatcher and the
retry queue: pod snapshots, registry instance descriptors, work items and
the tagged pod event variant.
"""

import builtins
from dataclasses import dataclass, field
from enum import Enum, IntEnum


class PodPhase(Enum):
    """Pod lifecycle phase as reported by the orchestrator."""

    PENDING = "Pending"
    RUNNING = "Running"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: "str | PodPhase | None") -> "PodPhase":
        """Map a raw phase string onto a phase, unknown values become UNKNOWN."""
        if isinstance(value, PodPhase):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class InstanceStatus(IntEnum):
    """Registry instance status."""

    RECEIVING = 1
    NOT_RECEIVING = 2


class WorkAction(Enum):
    """Action carried by a retry work item."""

    REGISTER = "register"
    CANCEL = "cancel"


class EventKind(Enum):
    """Kind of pod notification."""

    ADDED = "added"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class EnvVar:
    """Container environment variable."""

    name: str
    value: str = ""


@dataclass(frozen=True)
class ContainerSpec:
    """Container definition, only the parts the registrar reads."""

    name: str
    env: builtins.tuple[EnvVar, ...] = ()


@dataclass(frozen=True)
class PodSnapshot:
    """Immutable view of one pod at a point in time."""

    name: str
    namespace: str = ""
    resource_version: str = ""
    phase: PodPhase = PodPhase.PENDING
    pod_ip: str = ""
    container_ready: builtins.tuple[bool, ...] = ()
    containers: builtins.tuple[ContainerSpec, ...] = ()

    @property
    def key(self) -> str:
        """Stable ``namespace/name`` identifier."""
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    @property
    def ready(self) -> bool:
        """True when no container reports not-ready."""
        return all(self.container_ready)

    @property
    def is_running(self) -> bool:
        return self.phase is PodPhase.RUNNING

    def __str__(self) -> str:
        return f"{self.key}[{self.phase.value}@{self.resource_version}]"


@dataclass
class InstanceDescriptor:
    """Record sent to the service registry."""

    addrs: builtins.list[str]
    last_ts: int
    hostname: str
    status: InstanceStatus
    zone: str = ""
    env: str = ""
    region: str = ""
    version: str = ""
    app_id: str = ""
    metadata: builtins.dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> builtins.dict[str, object]:
        return {
            "addrs": list(self.addrs),
            "last_ts": self.last_ts,
            "hostname": self.hostname,
            "status": int(self.status),
            "zone": self.zone,
            "env": self.env,
            "region": self.region,
            "version": self.version,
            "app_id": self.app_id,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class WorkItem:
    """A pending retry of a register or cancel for one pod."""

    action: WorkAction
    snapshot: PodSnapshot

    @property
    def key(self) -> str:
        return self.snapshot.key

    @property
    def token(self) -> builtins.tuple[WorkAction, str]:
        """Deduplication identity; the snapshot itself is not part of it."""
        return (self.action, self.snapshot.key)


@dataclass(frozen=True)
class PodEvent:
    """Tagged pod notification produced at the orchestrator boundary."""

    kind: EventKind
    new: PodSnapshot
    old: PodSnapshot | None = None

    @classmethod
    def added(cls, snapshot: PodSnapshot) -> "PodEvent":
        return cls(EventKind.ADDED, snapshot)

    @classmethod
    def updated(cls, old: PodSnapshot, new: PodSnapshot) -> "PodEvent":
        return cls(EventKind.UPDATED, new, old)

    @classmethod
    def deleted(cls, snapshot: PodSnapshot) -> "PodEvent":
        return cls(EventKind.DELETED, snapshot)
