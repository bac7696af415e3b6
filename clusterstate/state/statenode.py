"""The merged per-machine view of a Node and its NodeClaim.

A machine exists as a NodeClaim before it exists as a Node, and the two are
delivered by independent watches. ``StateNode`` holds whichever of the two
has been seen and answers questions about the machine from the side that is
authoritative at its current lifecycle stage:

- only a NodeClaim: the claim answers everything;
- only a Node (unmanaged): the node answers everything and is always
  considered registered and initialized;
- both: the claim answers until the node carries the registered label.

The rule is evaluated on every read. Nothing derived from either object is
cached, since either side may be stale for a while.

A StateNode also owns the per-pod usage ledgers (requests, limits, host
ports, volumes). It does no locking of its own; the owning store serializes
access per node.
"""

from __future__ import annotations

import copy
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from kubernetes.client import V1Node, V1Pod, V1Taint

from clusterstate.apis import (
    LABEL_HOSTNAME,
    NODE_INITIALIZED_LABEL_KEY,
    NODE_REGISTERED_LABEL_KEY,
    NamespacedName,
    NodeClaim,
    taint_to_dict,
)
from clusterstate.context import RequestContext, background
from clusterstate.index import node_provider_id
from clusterstate.options import Options
from clusterstate.resources import (
    ResourceList,
    is_zero,
    limits_for_pods,
    merge,
    parse_resource_list,
    requests_for_pods,
    subtract,
    to_string_map,
)
from clusterstate.scheduling.hostports import HostPortUsage, get_host_ports
from clusterstate.scheduling.taints import KNOWN_EPHEMERAL_TAINTS, taint_in
from clusterstate.scheduling.volumes import Volumes, VolumeUsage
from clusterstate.utils.node import PodLister
from clusterstate.utils.pod import is_owned_by_daemonset, pod_key

MIN_NOMINATION_WINDOW_S = 10.0

VolumeResolverFn = Callable[[V1Pod, Optional[RequestContext]], Volumes]


def nomination_window(options: Options) -> float:
    return max(2 * options.batch_max_duration, MIN_NOMINATION_WINDOW_S)


class Representation(Enum):
    """Which underlying objects a StateNode currently has."""
    NODE_ONLY = "node-only"
    CLAIM_ONLY = "claim-only"
    BOTH = "both"


class StateNodes(List["StateNode"]):
    """An ordered collection of StateNodes."""

    def active(self) -> "StateNodes":
        return StateNodes(n for n in self if not n.marked_for_deletion())

    def deleting(self) -> "StateNodes":
        return StateNodes(n for n in self if n.marked_for_deletion())

    def pods(self, pod_lister: PodLister, ctx: Optional[RequestContext] = None) -> List[V1Pod]:
        """Pods bound to every node. The first failure aborts the whole query."""
        pods: List[V1Pod] = []
        for node in self:
            pods.extend(node.pods(pod_lister, ctx))
        return pods

    def reschedulable_pods(self, pod_lister: PodLister, ctx: Optional[RequestContext] = None) -> List[V1Pod]:
        pods: List[V1Pod] = []
        for node in self:
            pods.extend(node.reschedulable_pods(pod_lister, ctx))
        return pods


class StateNode:
    """Cached state for one machine, built from its Node and/or NodeClaim."""

    def __init__(self, node: Optional[V1Node] = None, nodeclaim: Optional[NodeClaim] = None) -> None:
        if node is None and nodeclaim is None:
            raise ValueError("a StateNode needs a Node, a NodeClaim or both")
        self.node = node
        self.nodeclaim = nodeclaim

        # Requests already claimed by daemonsets. Tracked separately so callers
        # can tell what future daemonset pods will take on a fresh node.
        self._daemonset_requests: Dict[NamespacedName, ResourceList] = {}
        self._daemonset_limits: Dict[NamespacedName, ResourceList] = {}

        self._pod_requests: Dict[NamespacedName, ResourceList] = {}
        self._pod_limits: Dict[NamespacedName, ResourceList] = {}

        self._host_port_usage = HostPortUsage()
        self._volume_usage = VolumeUsage()

        self._marked_for_deletion = False
        self._nominated_until = 0.0

    def __repr__(self) -> str:
        return f"StateNode(name={self.name()!r}, provider_id={self.provider_id()!r}, {self.representation().value})"

    # -------- identity --------

    def representation(self) -> Representation:
        if self.node is None:
            return Representation.CLAIM_ONLY
        if self.nodeclaim is None:
            return Representation.NODE_ONLY
        return Representation.BOTH

    def _claim_is_authoritative(self) -> bool:
        rep = self.representation()
        if rep is Representation.CLAIM_ONLY:
            return True
        if rep is Representation.NODE_ONLY:
            return False
        return not self.registered()

    def managed(self) -> bool:
        return self.nodeclaim is not None

    def name(self) -> str:
        if self._claim_is_authoritative():
            return self.nodeclaim.name
        return self.node.metadata.name

    def provider_id(self) -> str:
        """The Node's provider id when there is a Node, else the claim's (may be empty)."""
        if self.node is None:
            return self.nodeclaim.status.provider_id
        return node_provider_id(self.node)

    def key(self) -> str:
        """Identity key used to correlate this machine across rebuilds."""
        return self.provider_id() or self.name()

    def host_name(self) -> str:
        return self.labels().get(LABEL_HOSTNAME) or self.name()

    # -------- lifecycle --------

    def _has_true_label(self, key: str) -> bool:
        if self.node is None:
            return False
        return (self.node.metadata.labels or {}).get(key) == "true"

    def registered(self) -> bool:
        if self.managed():
            return self._has_true_label(NODE_REGISTERED_LABEL_KEY)
        return True

    def initialized(self) -> bool:
        if self.managed():
            return self._has_true_label(NODE_INITIALIZED_LABEL_KEY)
        return True

    def marked_for_deletion(self) -> bool:
        # Once a claim exists, its deletion is what counts; a lingering Node
        # being deleted under a live claim does not mark the machine.
        if self._marked_for_deletion:
            return True
        if self.nodeclaim is not None:
            return self.nodeclaim.is_deleting()
        return self.node is not None and self.node.metadata.deletion_timestamp is not None

    def mark_for_deletion(self) -> None:
        self._marked_for_deletion = True

    def unmark_for_deletion(self) -> None:
        self._marked_for_deletion = False

    def nominate(self, options: Options, now: Optional[float] = None) -> None:
        now = time.time() if now is None else now
        self._nominated_until = now + nomination_window(options)

    def nominated(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return self._nominated_until > now

    @property
    def nominated_until(self) -> float:
        return self._nominated_until

    # -------- metadata --------

    def labels(self) -> Dict[str, str]:
        if self._claim_is_authoritative():
            return self.nodeclaim.labels
        return self.node.metadata.labels or {}

    def annotations(self) -> Dict[str, str]:
        if self._claim_is_authoritative():
            return self.nodeclaim.annotations
        return self.node.metadata.annotations or {}

    def taints(self) -> List[V1Taint]:
        if self._claim_is_authoritative():
            taints = list(self.nodeclaim.spec.taints)
        else:
            taints = list((self.node.spec.taints if self.node.spec else None) or [])
        if self.managed() and not self.initialized():
            # Ephemeral and startup taints come and go during bootstrap. If
            # one of them showed up again later for another reason (a cordon,
            # say) we must not have learned to expect it on this node.
            startup = self.nodeclaim.spec.startup_taints
            return [
                t for t in taints
                if not taint_in(t, KNOWN_EPHEMERAL_TAINTS) and not taint_in(t, startup)
            ]
        return taints

    # -------- resources --------

    def _node_status(self, field_name: str) -> ResourceList:
        if self.node is None or self.node.status is None:
            return {}
        return parse_resource_list(getattr(self.node.status, field_name))

    def _status_resources(self, field_name: str) -> ResourceList:
        if self.initialized() or self.nodeclaim is None:
            return self._node_status(field_name)
        # A freshly launched node reports zero for resources the kubelet has
        # not discovered yet (GPUs, ephemeral storage); fill those in from
        # what the claim expects.
        ret = self._node_status(field_name)
        for name, qty in getattr(self.nodeclaim.status, field_name).items():
            if is_zero(ret.get(name)):
                ret[name] = qty
        return ret

    def capacity(self) -> ResourceList:
        return self._status_resources("capacity")

    def allocatable(self) -> ResourceList:
        return self._status_resources("allocatable")

    def available(self) -> ResourceList:
        """Allocatable minus everything requested by pods bound here."""
        return subtract(self.allocatable(), self.pod_requests())

    def pod_requests(self) -> ResourceList:
        return merge(*self._pod_requests.values())

    def pod_limits(self) -> ResourceList:
        return merge(*self._pod_limits.values())

    def daemonset_requests(self) -> ResourceList:
        return merge(*self._daemonset_requests.values())

    def daemonset_limits(self) -> ResourceList:
        return merge(*self._daemonset_limits.values())

    def host_port_usage(self) -> HostPortUsage:
        return self._host_port_usage

    def volume_usage(self) -> VolumeUsage:
        return self._volume_usage

    def pod_keys(self) -> List[NamespacedName]:
        return list(self._pod_requests)

    # -------- pods --------

    def pods(self, pod_lister: PodLister, ctx: Optional[RequestContext] = None) -> List[V1Pod]:
        if self.node is None:
            return []
        return pod_lister.get_pods(self.node, ctx)

    def reschedulable_pods(self, pod_lister: PodLister, ctx: Optional[RequestContext] = None) -> List[V1Pod]:
        if self.node is None:
            return []
        return pod_lister.get_reschedulable_pods(self.node, ctx)

    def update_for_pod(
        self,
        pod: V1Pod,
        volume_resolver: VolumeResolverFn,
        ctx: Optional[RequestContext] = None,
    ) -> None:
        """Record ``pod``'s usage on this node, replacing any earlier record.

        Volumes are resolved first. If that fails, the exception propagates
        and none of the ledgers are touched.
        """
        ctx = ctx or background()
        ctx.check("updating pod usage")
        self.record_pod(pod, volume_resolver(pod, ctx))

    def record_pod(self, pod: V1Pod, volumes: Volumes) -> None:
        """Record ``pod``'s usage with volumes that were already resolved. Does no I/O."""
        key = pod_key(pod)
        host_ports = get_host_ports(pod)

        requests = requests_for_pods(pod)
        limits = limits_for_pods(pod)
        self._pod_requests[key] = requests
        self._pod_limits[key] = limits
        if is_owned_by_daemonset(pod):
            self._daemonset_requests[key] = requests
            self._daemonset_limits[key] = limits

        # The trackers are not idempotent, so a pod seen before is released
        # before it is added again.
        if key in self._host_port_usage:
            self._host_port_usage.delete_pod(key)
        if key in self._volume_usage:
            self._volume_usage.delete_pod(key)
        self._host_port_usage.add(pod, host_ports)
        self._volume_usage.add(pod, volumes)

    def cleanup_for_pod(self, key: NamespacedName) -> None:
        self._host_port_usage.delete_pod(key)
        self._volume_usage.delete_pod(key)
        self._pod_requests.pop(key, None)
        self._pod_limits.pop(key, None)
        self._daemonset_requests.pop(key, None)
        self._daemonset_limits.pop(key, None)

    def take_usage_from(self, other: "StateNode") -> None:
        """Adopt the pod ledgers of ``other``, which describes the same machine."""
        for key in other._pod_requests:
            self.cleanup_for_pod(key)
        self._pod_requests.update(other._pod_requests)
        self._pod_limits.update(other._pod_limits)
        self._daemonset_requests.update(other._daemonset_requests)
        self._daemonset_limits.update(other._daemonset_limits)
        self._host_port_usage.update(other._host_port_usage)
        self._volume_usage.update(other._volume_usage)
        self._marked_for_deletion = self._marked_for_deletion or other._marked_for_deletion
        self._nominated_until = max(self._nominated_until, other._nominated_until)

    # -------- snapshots --------

    def deep_copy(self) -> "StateNode":
        out = StateNode(node=copy.deepcopy(self.node), nodeclaim=copy.deepcopy(self.nodeclaim))
        out._pod_requests = dict(self._pod_requests)
        out._pod_limits = dict(self._pod_limits)
        out._daemonset_requests = dict(self._daemonset_requests)
        out._daemonset_limits = dict(self._daemonset_limits)
        out._host_port_usage = self._host_port_usage.copy()
        out._volume_usage = self._volume_usage.copy()
        out._marked_for_deletion = self._marked_for_deletion
        out._nominated_until = self._nominated_until
        return out

    def to_dict(self, now: Optional[float] = None) -> Dict[str, Any]:
        return {
            "name": self.name(),
            "key": self.key(),
            "provider_id": self.provider_id(),
            "representation": self.representation().value,
            "managed": self.managed(),
            "registered": self.registered(),
            "initialized": self.initialized(),
            "marked_for_deletion": self.marked_for_deletion(),
            "nominated": self.nominated(now),
            "labels": dict(self.labels()),
            "taints": [taint_to_dict(t) for t in self.taints()],
            "capacity": to_string_map(self.capacity()),
            "allocatable": to_string_map(self.allocatable()),
            "available": to_string_map(self.available()),
            "pod_requests": to_string_map(self.pod_requests()),
            "daemonset_requests": to_string_map(self.daemonset_requests()),
            "pods": [str(k) for k in self.pod_keys()],
        }
