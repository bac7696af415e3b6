"""Pod ownership and lifecycle predicates."""

from __future__ import annotations

from kubernetes.client import V1Pod

from clusterstate.apis import NamespacedName


def pod_key(pod: V1Pod) -> NamespacedName:
    return NamespacedName(pod.metadata.namespace or "", pod.metadata.name)


def _is_owned_by(pod: V1Pod, kind: str) -> bool:
    for owner in pod.metadata.owner_references or []:
        if owner.kind == kind:
            return True
    return False


def is_owned_by_daemonset(pod: V1Pod) -> bool:
    return _is_owned_by(pod, "DaemonSet")


def is_owned_by_node(pod: V1Pod) -> bool:
    """Static (mirror) pods are owned by their Node."""
    return _is_owned_by(pod, "Node")


def is_terminal(pod: V1Pod) -> bool:
    phase = pod.status.phase if pod.status else None
    return phase in ("Succeeded", "Failed")


def is_terminating(pod: V1Pod) -> bool:
    return pod.metadata.deletion_timestamp is not None


def is_reschedulable(pod: V1Pod) -> bool:
    # Pods that would not come back elsewhere if the node went away.
    return not (
        is_terminal(pod)
        or is_terminating(pod)
        or is_owned_by_daemonset(pod)
        or is_owned_by_node(pod)
    )
