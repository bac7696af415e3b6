"""Taint matching and the taints known to come and go during bootstrap."""

from __future__ import annotations

from typing import Iterable

from kubernetes.client import V1Taint

TAINT_NODE_NOT_READY = "node.kubernetes.io/not-ready"
TAINT_NODE_UNREACHABLE = "node.kubernetes.io/unreachable"
TAINT_EXTERNAL_CLOUD_PROVIDER = "node.cloudprovider.kubernetes.io/uninitialized"

# Added and removed by the node lifecycle and cloud controllers while a node
# boots; they say nothing about whether pods can land there afterwards.
KNOWN_EPHEMERAL_TAINTS = (
    V1Taint(key=TAINT_NODE_NOT_READY, effect="NoSchedule"),
    V1Taint(key=TAINT_NODE_UNREACHABLE, effect="NoSchedule"),
    V1Taint(key=TAINT_EXTERNAL_CLOUD_PROVIDER, value="true", effect="NoSchedule"),
)


def match_taint(a: V1Taint, b: V1Taint) -> bool:
    """Taints match when key and effect agree; the value is not compared."""
    return a.key == b.key and a.effect == b.effect


def taint_in(taint: V1Taint, taints: Iterable[V1Taint]) -> bool:
    return any(match_taint(t, taint) for t in taints)
