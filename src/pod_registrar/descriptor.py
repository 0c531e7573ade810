"""
Instance descriptor builder.

Maps a pod snapshot onto the record sent to the service registry. The
mapping is pure: the caller runs any health probe and passes its result in.
"""

import time

from .core import InstanceDescriptor, InstanceStatus, PodSnapshot
from .health import ProbeResult

DEFAULT_WEIGHT = "10"
INSTANCE_PORT = 80

# Container env var -> descriptor attribute
INSTANCE_FIELDS = {
    "IDG_CLUSTERUID": "zone",
    "IDG_RUNTIME": "env",
    "IDG_UNIQUEID": "app_id",
    "IDG_SITEUID": "region",
    "IDG_VERSION": "version",
}

# Container env var -> metadata key
METADATA_FIELDS = {
    "IDG_RUNTIME": "runtime",
    "IDG_SERVICE_NAME": "service_name",
    "MSP_PROTOCOL_MODE": "mode",
    "IDG_SERVICE_IMAGEURL": "service_image",
    "IDG_SERVICE_GATEWAY_ADDR": "service_gateway_addr",
    "IDG_WEIGHT": "weight",
}


def instance_address(snapshot: PodSnapshot) -> str:
    return f"http://{snapshot.pod_ip}:{INSTANCE_PORT}"


def build_descriptor(
    snapshot: PodSnapshot,
    health: ProbeResult | None = None,
    *,
    departing: bool = False,
    now: float | None = None,
) -> InstanceDescriptor:
    """Build the registry record for a pod.

    Args:
        snapshot: Pod to describe
        health: Probe result overriding the readiness-derived status
        departing: Force NOT_RECEIVING, used on the cancel path
        now: Timestamp to stamp, defaults to the current time

    Environment variables are read from every container in order; when
    several containers set the same field the last one wins.
    """
    if departing:
        status = InstanceStatus.NOT_RECEIVING
    elif health is not None:
        status = InstanceStatus.RECEIVING if health.healthy else InstanceStatus.NOT_RECEIVING
    elif snapshot.ready:
        status = InstanceStatus.RECEIVING
    else:
        status = InstanceStatus.NOT_RECEIVING

    descriptor = InstanceDescriptor(
        addrs=[instance_address(snapshot)],
        last_ts=int(time.time() if now is None else now),
        hostname=snapshot.name,
        status=status,
    )

    metadata: dict[str, str] = {}
    for container in snapshot.containers:
        for var in container.env:
            attribute = INSTANCE_FIELDS.get(var.name)
            if attribute:
                setattr(descriptor, attribute, var.value)
            key = METADATA_FIELDS.get(var.name)
            if key:
                metadata[key] = var.value

    if not metadata.get("weight"):
        metadata["weight"] = DEFAULT_WEIGHT
    # TODO: fill cert_sn once instance certificates are issued per pod
    metadata["cert_sn"] = ""

    descriptor.metadata = metadata
    return descriptor
