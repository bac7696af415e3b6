"""Well-known keys and the NodeClaim model.

NodeClaims are ``karpenter.sh/v1beta1`` custom objects, so the Kubernetes
client hands them back as plain dicts. ``NodeClaim.from_dict`` turns such a
dict into a typed object with parsed quantities and ``V1Taint`` lists, which
is what the rest of the package works with.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, NamedTuple, Optional

from kubernetes.client import V1Taint

from clusterstate.resources import ResourceList, parse_resource_list, to_string_map

GROUP = "karpenter.sh"
VERSION = "v1beta1"
NODECLAIM_PLURAL = "nodeclaims"
NODECLAIM_KIND = "NodeClaim"

NODE_REGISTERED_LABEL_KEY = f"{GROUP}/registered"
NODE_INITIALIZED_LABEL_KEY = f"{GROUP}/initialized"
NODEPOOL_LABEL_KEY = f"{GROUP}/nodepool"
LABEL_HOSTNAME = "kubernetes.io/hostname"

TERMINATION_FINALIZER = f"{GROUP}/termination"

DISRUPTION_TAINT_KEY = f"{GROUP}/disruption"
DISRUPTING_NO_SCHEDULE_TAINT_VALUE = "disrupting"

CONDITION_LAUNCHED = "Launched"
CONDITION_REGISTERED = "Registered"
CONDITION_INITIALIZED = "Initialized"


class NamespacedName(NamedTuple):
    """Identity of a namespaced (or, with an empty namespace, cluster scoped) object."""
    namespace: str
    name: str

    def __str__(self) -> str:
        if not self.namespace:
            return self.name
        return f"{self.namespace}/{self.name}"


def disruption_no_schedule_taint() -> V1Taint:
    """The canonical scheduling-pause taint. A fresh object on every call."""
    return V1Taint(
        key=DISRUPTION_TAINT_KEY,
        value=DISRUPTING_NO_SCHEDULE_TAINT_VALUE,
        effect="NoSchedule",
    )


def is_disrupting_taint(taint: V1Taint) -> bool:
    return (
        taint.key == DISRUPTION_TAINT_KEY
        and taint.effect == "NoSchedule"
        and taint.value == DISRUPTING_NO_SCHEDULE_TAINT_VALUE
    )


# ----------------------------- parsing helpers -----------------------------

def parse_time(value: Any) -> Optional[datetime]:
    """Parse an RFC3339 timestamp as found in raw object dicts."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def format_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


def taint_from_dict(raw: Dict[str, Any]) -> V1Taint:
    return V1Taint(
        key=raw.get("key"),
        value=raw.get("value"),
        effect=raw.get("effect"),
        time_added=parse_time(raw.get("timeAdded")),
    )


def taint_to_dict(taint: V1Taint) -> Dict[str, Any]:
    out: Dict[str, Any] = {"key": taint.key, "effect": taint.effect}
    if taint.value is not None:
        out["value"] = taint.value
    if taint.time_added is not None:
        out["timeAdded"] = format_time(taint.time_added)
    return out


# ----------------------------- NodeClaim model -----------------------------

@dataclass
class Condition:
    type: str
    status: str = "Unknown"  # True | False | Unknown
    reason: str = ""
    message: str = ""
    last_transition_time: Optional[datetime] = None

    def is_true(self) -> bool:
        return self.status == "True"


@dataclass
class NodeClaimSpec:
    taints: List[V1Taint] = field(default_factory=list)
    startup_taints: List[V1Taint] = field(default_factory=list)
    requirements: List[Dict[str, Any]] = field(default_factory=list)
    resources: ResourceList = field(default_factory=dict)  # requests
    node_class_ref: Optional[Dict[str, Any]] = None


@dataclass
class NodeClaimStatus:
    provider_id: str = ""
    node_name: str = ""
    image_id: str = ""
    capacity: ResourceList = field(default_factory=dict)
    allocatable: ResourceList = field(default_factory=dict)
    conditions: List[Condition] = field(default_factory=list)


@dataclass
class NodeClaim:
    """Typed view of a ``karpenter.sh/v1beta1`` NodeClaim."""
    name: str
    uid: str = ""
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    finalizers: List[str] = field(default_factory=list)
    deletion_timestamp: Optional[datetime] = None
    resource_version: str = ""
    spec: NodeClaimSpec = field(default_factory=NodeClaimSpec)
    status: NodeClaimStatus = field(default_factory=NodeClaimStatus)

    @property
    def key(self) -> NamespacedName:
        return NamespacedName("", self.name)

    def is_deleting(self) -> bool:
        return self.deletion_timestamp is not None

    def get_condition(self, condition_type: str) -> Optional[Condition]:
        for cond in self.status.conditions:
            if cond.type == condition_type:
                return cond
        return None

    def mark_true(self, condition_type: str) -> None:
        cond = self.get_condition(condition_type)
        if cond is None:
            cond = Condition(type=condition_type)
            self.status.conditions.append(cond)
        cond.status = "True"

    @classmethod
    def from_dict(cls, obj: Dict[str, Any]) -> "NodeClaim":
        """Build a NodeClaim from the dict returned by ``CustomObjectsApi``."""
        metadata = obj.get("metadata") or {}
        spec = obj.get("spec") or {}
        status = obj.get("status") or {}
        name = metadata.get("name")
        if not name:
            raise ValueError("nodeclaim metadata.name is required")

        conditions = [
            Condition(
                type=c.get("type", ""),
                status=c.get("status", "Unknown"),
                reason=c.get("reason", "") or "",
                message=c.get("message", "") or "",
                last_transition_time=parse_time(c.get("lastTransitionTime")),
            )
            for c in (status.get("conditions") or [])
        ]
        return cls(
            name=name,
            uid=metadata.get("uid", "") or "",
            labels=dict(metadata.get("labels") or {}),
            annotations=dict(metadata.get("annotations") or {}),
            finalizers=list(metadata.get("finalizers") or []),
            deletion_timestamp=parse_time(metadata.get("deletionTimestamp")),
            resource_version=metadata.get("resourceVersion", "") or "",
            spec=NodeClaimSpec(
                taints=[taint_from_dict(t) for t in (spec.get("taints") or [])],
                startup_taints=[taint_from_dict(t) for t in (spec.get("startupTaints") or [])],
                requirements=list(spec.get("requirements") or []),
                resources=parse_resource_list((spec.get("resources") or {}).get("requests")),
                node_class_ref=spec.get("nodeClassRef"),
            ),
            status=NodeClaimStatus(
                provider_id=status.get("providerID", "") or "",
                node_name=status.get("nodeName", "") or "",
                image_id=status.get("imageID", "") or "",
                capacity=parse_resource_list(status.get("capacity")),
                allocatable=parse_resource_list(status.get("allocatable")),
                conditions=conditions,
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {
            "name": self.name,
            "labels": dict(self.labels),
            "annotations": dict(self.annotations),
            "finalizers": list(self.finalizers),
        }
        if self.uid:
            metadata["uid"] = self.uid
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        if self.deletion_timestamp is not None:
            metadata["deletionTimestamp"] = format_time(self.deletion_timestamp)
        spec: Dict[str, Any] = {
            "taints": [taint_to_dict(t) for t in self.spec.taints],
            "startupTaints": [taint_to_dict(t) for t in self.spec.startup_taints],
            "requirements": list(self.spec.requirements),
            "resources": {"requests": to_string_map(self.spec.resources)},
        }
        if self.spec.node_class_ref:
            spec["nodeClassRef"] = dict(self.spec.node_class_ref)
        return {
            "apiVersion": f"{GROUP}/{VERSION}",
            "kind": NODECLAIM_KIND,
            "metadata": metadata,
            "spec": spec,
            "status": {
                "providerID": self.status.provider_id,
                "nodeName": self.status.node_name,
                "imageID": self.status.image_id,
                "capacity": to_string_map(self.status.capacity),
                "allocatable": to_string_map(self.status.allocatable),
                "conditions": [
                    {
                        "type": c.type,
                        "status": c.status,
                        "reason": c.reason,
                        "message": c.message,
                    }
                    for c in self.status.conditions
                ],
            },
        }
