"""
Kubernetes boundary.

Converts ``kubernetes.client.V1Pod`` objects into immutable pod snapshots.
Narrowing happens here, once; everything past this module works on
``PodSnapshot`` only.
"""

import logging
from typing import Any

from kubernetes import client
from kubernetes import config as k8s_config

from .config import KubernetesConfig
from .core import ContainerSpec, EnvVar, PodPhase, PodSnapshot

logger = logging.getLogger(__name__)


def snapshot_from_pod(pod: client.V1Pod) -> PodSnapshot:
    """Build a snapshot from a Kubernetes pod object."""
    metadata = pod.metadata or client.V1ObjectMeta()
    status = pod.status or client.V1PodStatus()
    spec = pod.spec

    containers = tuple(
        ContainerSpec(
            name=container.name,
            env=tuple(EnvVar(var.name, var.value or "") for var in container.env or []),
        )
        for container in (spec.containers if spec is not None else None) or []
    )

    return PodSnapshot(
        name=metadata.name or "",
        namespace=metadata.namespace or "",
        resource_version=metadata.resource_version or "",
        phase=PodPhase.parse(status.phase),
        pod_ip=status.pod_ip or "",
        container_ready=tuple(bool(cs.ready) for cs in status.container_statuses or []),
        containers=containers,
    )


def as_snapshot(obj: Any) -> PodSnapshot | None:
    """Narrow an arbitrary notification payload to a pod snapshot.

    Returns None for anything that is not a pod.
    """
    if isinstance(obj, PodSnapshot):
        return obj
    if isinstance(obj, client.V1Pod):
        return snapshot_from_pod(obj)
    return None


def load_core_api(config: KubernetesConfig) -> client.CoreV1Api:
    """Create a CoreV1 API client from in-cluster or kubeconfig credentials."""
    if config.in_cluster:
        k8s_config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes configuration")
    else:
        k8s_config.load_kube_config(config_file=config.kubeconfig)
        logger.info("Loaded kubeconfig %s", config.kubeconfig or "(default)")
    return client.CoreV1Api()
