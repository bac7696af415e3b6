"""Persistent volume usage per node, grouped by CSI driver.

CSI drivers cap how many volumes a node can attach. ``VolumeUsage`` tracks
which claims each pod brings to a node so the scheduler can check a placement
against the limits published on the node's CSINode object.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Set

from kubernetes.client import CoreV1Api, StorageV1Api, V1Pod
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError

from clusterstate.apis import NamespacedName
from clusterstate.context import RequestContext, background
from clusterstate.errors import VolumeResolutionError
from clusterstate.utils.pod import pod_key

logger = logging.getLogger(__name__)


class Volumes(Dict[str, Set[str]]):
    """CSI driver name -> set of volume ids (``namespace/claim``)."""

    def add(self, driver: str, volume_id: str) -> None:
        self.setdefault(driver, set()).add(volume_id)

    def union(self, other: Dict[str, Set[str]]) -> "Volumes":
        out = self.copy()
        for driver, ids in other.items():
            out.setdefault(driver, set()).update(ids)
        return out

    def copy(self) -> "Volumes":
        out = Volumes()
        for driver, ids in self.items():
            out[driver] = set(ids)
        return out


class VolumeResolver:
    """Resolves a pod's claims to CSI drivers through the API server."""

    def __init__(self, core_api: CoreV1Api, storage_api: StorageV1Api) -> None:
        self.core_api = core_api
        self.storage_api = storage_api

    def __call__(self, pod: V1Pod, ctx: Optional[RequestContext] = None) -> Volumes:
        return get_volumes(self.core_api, self.storage_api, pod, ctx)


def get_volumes(
    core_api: CoreV1Api,
    storage_api: StorageV1Api,
    pod: V1Pod,
    ctx: Optional[RequestContext] = None,
) -> Volumes:
    """Resolve every PVC-backed volume of ``pod`` to its CSI driver.

    Raises:
        VolumeResolutionError: a claim, volume or storage class could not be read.
        OperationCancelled: ``ctx`` was cancelled.
    """
    ctx = ctx or background()
    key = pod_key(pod)
    volumes = Volumes()
    for volume in (pod.spec.volumes if pod.spec else None) or []:
        storage_class_name = ""
        volume_name = ""
        if volume.persistent_volume_claim is not None:
            claim_name = volume.persistent_volume_claim.claim_name
            ctx.check("reading persistent volume claim")
            try:
                pvc = core_api.read_namespaced_persistent_volume_claim(
                    claim_name, key.namespace, **ctx.request_kwargs()
                )
            except (ApiException, HTTPError) as e:
                raise VolumeResolutionError(str(key), e) from e
            volume_id = f"{key.namespace}/{claim_name}"
            storage_class_name = pvc.spec.storage_class_name or ""
            volume_name = pvc.spec.volume_name or ""
        elif volume.ephemeral is not None:
            # Generic ephemeral volumes get a claim named <pod>-<volume>.
            template = volume.ephemeral.volume_claim_template
            volume_id = f"{key.namespace}/{key.name}-{volume.name}"
            if template is not None and template.spec is not None:
                storage_class_name = template.spec.storage_class_name or ""
        else:
            continue

        driver = _resolve_driver(core_api, storage_api, key, volume_name, storage_class_name, ctx)
        if not driver:
            continue
        volumes.add(driver, volume_id)
    return volumes


def _resolve_driver(
    core_api: CoreV1Api,
    storage_api: StorageV1Api,
    key: NamespacedName,
    volume_name: str,
    storage_class_name: str,
    ctx: RequestContext,
) -> str:
    # A bound volume names its driver directly; otherwise fall back to the
    # provisioner of the claim's storage class.
    if volume_name:
        ctx.check("reading persistent volume")
        try:
            pv = core_api.read_persistent_volume(volume_name, **ctx.request_kwargs())
        except (ApiException, HTTPError) as e:
            raise VolumeResolutionError(str(key), e) from e
        if pv.spec is not None and pv.spec.csi is not None:
            return pv.spec.csi.driver
    if storage_class_name:
        ctx.check("reading storage class")
        try:
            sc = storage_api.read_storage_class(storage_class_name, **ctx.request_kwargs())
        except (ApiException, HTTPError) as e:
            raise VolumeResolutionError(str(key), e) from e
        return sc.provisioner or ""
    return ""


def get_volume_limits(
    storage_api: StorageV1Api,
    node_name: str,
    ctx: Optional[RequestContext] = None,
) -> Dict[str, int]:
    """Attachable volume count per CSI driver, from the node's CSINode."""
    ctx = ctx or background()
    ctx.check("reading csi node")
    try:
        csi_node = storage_api.read_csi_node(node_name, **ctx.request_kwargs())
    except ApiException as e:
        if e.status == 404:
            logger.debug(f"No CSINode for {node_name}, treating volume limits as unbounded")
            return {}
        raise
    limits: Dict[str, int] = {}
    for driver in (csi_node.spec.drivers if csi_node.spec else None) or []:
        if driver.allocatable is not None and driver.allocatable.count is not None:
            limits[driver.name] = int(driver.allocatable.count)
    return limits


class VolumeUsage:
    def __init__(self) -> None:
        self._volumes = Volumes()
        self._pod_volumes: Dict[NamespacedName, Volumes] = {}

    def add(self, pod: V1Pod, volumes: Volumes) -> None:
        self._pod_volumes[pod_key(pod)] = volumes.copy()
        self._volumes = self._volumes.union(volumes)

    def delete_pod(self, key: NamespacedName) -> None:
        if self._pod_volumes.pop(key, None) is None:
            return
        # Two pods may share a claim, so the union is rebuilt rather than
        # subtracting this pod's ids.
        volumes = Volumes()
        for pod_volumes in self._pod_volumes.values():
            volumes = volumes.union(pod_volumes)
        self._volumes = volumes

    def exceeds_limits(self, volumes: Volumes, limits: Dict[str, int]) -> Optional[str]:
        """Return the first driver whose limit ``volumes`` would push us past."""
        for driver, ids in self._volumes.union(volumes).items():
            limit = limits.get(driver)
            if limit is not None and len(ids) > limit:
                return driver
        return None

    def volumes(self) -> Volumes:
        return self._volumes.copy()

    def volumes_for(self, key: NamespacedName) -> Volumes:
        return self._pod_volumes.get(key, Volumes()).copy()

    def update(self, other: "VolumeUsage") -> None:
        """Take over every pod recorded in ``other``."""
        for key, volumes in other._pod_volumes.items():
            self._pod_volumes[key] = volumes.copy()
            self._volumes = self._volumes.union(volumes)

    def copy(self) -> "VolumeUsage":
        out = VolumeUsage()
        out._volumes = self._volumes.copy()
        out._pod_volumes = {k: v.copy() for k, v in self._pod_volumes.items()}
        return out

    def __len__(self) -> int:
        return len(self._pod_volumes)

    def __contains__(self, key: object) -> bool:
        return key in self._pod_volumes
