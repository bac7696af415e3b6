from unittest.mock import MagicMock

import pytest
from kubernetes.client import (
    V1CSINode,
    V1CSINodeDriver,
    V1CSINodeSpec,
    V1CSIPersistentVolumeSource,
    V1EphemeralVolumeSource,
    V1ObjectMeta,
    V1PersistentVolume,
    V1PersistentVolumeClaim,
    V1PersistentVolumeClaimSpec,
    V1PersistentVolumeClaimTemplate,
    V1PersistentVolumeSpec,
    V1StorageClass,
    V1Volume,
    V1VolumeNodeResources,
)
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import ReadTimeoutError

from builders import make_pod

from clusterstate.apis import NamespacedName
from clusterstate.context import RequestContext
from clusterstate.errors import OperationCancelled, VolumeResolutionError
from clusterstate.scheduling.volumes import (
    VolumeResolver,
    Volumes,
    VolumeUsage,
    get_volume_limits,
    get_volumes,
)


def _pvc(storage_class=None, volume_name=None):
    return V1PersistentVolumeClaim(
        metadata=V1ObjectMeta(name="data"),
        spec=V1PersistentVolumeClaimSpec(storage_class_name=storage_class, volume_name=volume_name),
    )


def test_bound_claim_uses_persistent_volume_driver():
    core = MagicMock()
    storage = MagicMock()
    core.read_namespaced_persistent_volume_claim.return_value = _pvc(volume_name="pv-1")
    core.read_persistent_volume.return_value = V1PersistentVolume(
        spec=V1PersistentVolumeSpec(csi=V1CSIPersistentVolumeSource(driver="ebs.csi.aws.com", volume_handle="vol-1"))
    )

    volumes = get_volumes(core, storage, make_pod(claims=["data"]))

    assert volumes == {"ebs.csi.aws.com": {"default/data"}}
    core.read_namespaced_persistent_volume_claim.assert_called_once_with("data", "default")
    storage.read_storage_class.assert_not_called()


def test_unbound_claim_falls_back_to_storage_class():
    core = MagicMock()
    storage = MagicMock()
    core.read_namespaced_persistent_volume_claim.return_value = _pvc(storage_class="gp3")
    storage.read_storage_class.return_value = V1StorageClass(
        metadata=V1ObjectMeta(name="gp3"), provisioner="ebs.csi.aws.com"
    )

    resolver = VolumeResolver(core, storage)
    assert resolver(make_pod(claims=["data"])) == {"ebs.csi.aws.com": {"default/data"}}


def test_ephemeral_volume_is_named_after_pod():
    core = MagicMock()
    storage = MagicMock()
    storage.read_storage_class.return_value = V1StorageClass(
        metadata=V1ObjectMeta(name="gp3"), provisioner="ebs.csi.aws.com"
    )
    pod = make_pod(name="web")
    pod.spec.volumes = [
        V1Volume(
            name="scratch",
            ephemeral=V1EphemeralVolumeSource(
                volume_claim_template=V1PersistentVolumeClaimTemplate(
                    spec=V1PersistentVolumeClaimSpec(storage_class_name="gp3")
                )
            ),
        )
    ]

    assert get_volumes(core, storage, pod) == {"ebs.csi.aws.com": {"default/web-scratch"}}
    core.read_namespaced_persistent_volume_claim.assert_not_called()


def test_api_failure_becomes_volume_resolution_error():
    core = MagicMock()
    core.read_namespaced_persistent_volume_claim.side_effect = ApiException(status=500, reason="boom")

    with pytest.raises(VolumeResolutionError) as exc_info:
        get_volumes(core, MagicMock(), make_pod(claims=["data"]))
    assert exc_info.value.pod_key == "default/pod-1"


def test_transport_timeout_becomes_volume_resolution_error():
    core = MagicMock()
    core.read_namespaced_persistent_volume_claim.side_effect = ReadTimeoutError(None, None, "Read timed out.")

    with pytest.raises(VolumeResolutionError) as exc_info:
        get_volumes(core, MagicMock(), make_pod(claims=["data"]))
    assert exc_info.value.pod_key == "default/pod-1"
    assert isinstance(exc_info.value.__cause__, ReadTimeoutError)


def test_cancelled_context_makes_no_calls():
    core = MagicMock()
    ctx = RequestContext()
    ctx.cancel.set()
    with pytest.raises(OperationCancelled):
        get_volumes(core, MagicMock(), make_pod(claims=["data"]), ctx)
    core.read_namespaced_persistent_volume_claim.assert_not_called()


def test_request_timeout_is_forwarded():
    core = MagicMock()
    core.read_namespaced_persistent_volume_claim.return_value = _pvc()
    get_volumes(core, MagicMock(), make_pod(claims=["data"]), RequestContext(timeout=3.0))
    core.read_namespaced_persistent_volume_claim.assert_called_once_with(
        "data", "default", _request_timeout=3.0
    )


def test_volume_limits_from_csi_node():
    storage = MagicMock()
    storage.read_csi_node.return_value = V1CSINode(
        metadata=V1ObjectMeta(name="node-1"),
        spec=V1CSINodeSpec(drivers=[
            V1CSINodeDriver(name="ebs.csi.aws.com", node_id="i-1", allocatable=V1VolumeNodeResources(count=25)),
            V1CSINodeDriver(name="efs.csi.aws.com", node_id="i-1"),
        ]),
    )
    assert get_volume_limits(storage, "node-1") == {"ebs.csi.aws.com": 25}


def test_missing_csi_node_means_no_limits():
    storage = MagicMock()
    storage.read_csi_node.side_effect = ApiException(status=404, reason="Not Found")
    assert get_volume_limits(storage, "node-1") == {}


def test_shared_claim_survives_one_pod_leaving():
    usage = VolumeUsage()
    shared = Volumes({"ebs": {"default/data"}})
    usage.add(make_pod(name="a"), shared)
    usage.add(make_pod(name="b"), shared)

    usage.delete_pod(NamespacedName("default", "a"))
    assert usage.volumes() == {"ebs": {"default/data"}}
    usage.delete_pod(NamespacedName("default", "b"))
    assert usage.volumes() == {}


def test_exceeds_limits():
    usage = VolumeUsage()
    usage.add(make_pod(name="a"), Volumes({"ebs": {"default/one"}}))
    assert usage.exceeds_limits(Volumes({"ebs": {"default/one"}}), {"ebs": 1}) is None
    assert usage.exceeds_limits(Volumes({"ebs": {"default/two"}}), {"ebs": 1}) == "ebs"
    assert usage.exceeds_limits(Volumes({"other": {"default/two"}}), {"ebs": 1}) is None
