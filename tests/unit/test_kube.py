from kubernetes import client

from pod_registrar.core import PodPhase, PodSnapshot
from pod_registrar.kube import as_snapshot, snapshot_from_pod


def _v1_pod(phase: str = "Running", ready=(True, False)) -> client.V1Pod:
    return client.V1Pod(
        metadata=client.V1ObjectMeta(name="orders-1", namespace="shop", resource_version="42"),
        spec=client.V1PodSpec(
            containers=[
                client.V1Container(
                    name="app",
                    env=[
                        client.V1EnvVar(name="IDG_UNIQUEID", value="orders"),
                        client.V1EnvVar(name="FROM_SECRET"),
                    ],
                ),
                client.V1Container(name="sidecar"),
            ]
        ),
        status=client.V1PodStatus(
            phase=phase,
            pod_ip="10.2.0.7",
            container_statuses=[
                client.V1ContainerStatus(
                    name=f"c{i}", image="img", image_id="sha", ready=flag, restart_count=0
                )
                for i, flag in enumerate(ready)
            ],
        ),
    )


def test_snapshot_from_pod() -> None:
    snapshot = snapshot_from_pod(_v1_pod())

    assert snapshot.key == "shop/orders-1"
    assert snapshot.resource_version == "42"
    assert snapshot.phase is PodPhase.RUNNING
    assert snapshot.pod_ip == "10.2.0.7"
    assert snapshot.container_ready == (True, False)
    assert not snapshot.ready
    assert [c.name for c in snapshot.containers] == ["app", "sidecar"]
    assert [(v.name, v.value) for v in snapshot.containers[0].env] == [
        ("IDG_UNIQUEID", "orders"),
        ("FROM_SECRET", ""),
    ]
    assert snapshot.containers[1].env == ()


def test_unknown_phase_maps_to_unknown() -> None:
    assert snapshot_from_pod(_v1_pod(phase="Evicted")).phase is PodPhase.UNKNOWN


def test_sparse_pod_object() -> None:
    snapshot = snapshot_from_pod(client.V1Pod(metadata=client.V1ObjectMeta(name="bare")))

    assert snapshot.key == "bare"
    assert snapshot.phase is PodPhase.UNKNOWN
    assert snapshot.pod_ip == ""
    assert snapshot.containers == ()
    assert snapshot.ready


def test_as_snapshot_narrows_payloads() -> None:
    existing = PodSnapshot(name="web-1")

    assert as_snapshot(existing) is existing
    assert as_snapshot(_v1_pod()).name == "orders-1"
    assert as_snapshot(client.V1Service()) is None
    assert as_snapshot(None) is None
