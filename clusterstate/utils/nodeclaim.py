"""Pairing NodeClaims with the Nodes that realize them.

Resolution goes through the provider id, which the cloud provider assigns to
both objects. A claim without a provider id has simply not launched yet and
maps to nothing; it is not an error. Zero or several matching Nodes for a
resolved id raise ``NodeNotFoundError`` / ``DuplicateNodeError``.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from kubernetes.client import V1Node, V1ObjectMeta, V1OwnerReference, V1Pod

from clusterstate.apis import (
    CONDITION_INITIALIZED,
    CONDITION_LAUNCHED,
    CONDITION_REGISTERED,
    GROUP,
    NODE_INITIALIZED_LABEL_KEY,
    NODECLAIM_KIND,
    NODEPOOL_LABEL_KEY,
    TERMINATION_FINALIZER,
    VERSION,
    NamespacedName,
    NodeClaim,
    NodeClaimSpec,
    NodeClaimStatus,
)
from clusterstate.errors import DuplicateNodeError, NodeNotFoundError
from clusterstate.index import IdentityIndex, node_provider_id
from clusterstate.resources import parse_resource_list

logger = logging.getLogger(__name__)

MapFunc = Callable[[object], List[NamespacedName]]


# ----------------------------- error classification -----------------------------

def is_node_not_found_error(err: Optional[BaseException]) -> bool:
    return isinstance(err, NodeNotFoundError)


def ignore_node_not_found_error(err: Optional[BaseException]) -> Optional[BaseException]:
    """Drop a NodeNotFoundError, hand anything else back unchanged."""
    if is_node_not_found_error(err):
        return None
    return err


def is_duplicate_node_error(err: Optional[BaseException]) -> bool:
    return isinstance(err, DuplicateNodeError)


def ignore_duplicate_node_error(err: Optional[BaseException]) -> Optional[BaseException]:
    if is_duplicate_node_error(err):
        return None
    return err


# ----------------------------- resolution -----------------------------

def all_nodes_for_nodeclaim(index: IdentityIndex, nodeclaim: NodeClaim) -> List[V1Node]:
    """All Nodes whose provider id equals the claim's; empty when unresolved."""
    if not nodeclaim.status.provider_id:
        return []
    return index.nodes_by_provider_id(nodeclaim.status.provider_id)


def node_for_nodeclaim(index: IdentityIndex, nodeclaim: NodeClaim) -> V1Node:
    """The single Node realizing ``nodeclaim``.

    Raises:
        DuplicateNodeError: more than one Node shares the claim's provider id.
        NodeNotFoundError: no Node has the claim's provider id (including a
            claim whose provider id is not resolved yet).
    """
    nodes = all_nodes_for_nodeclaim(index, nodeclaim)
    if len(nodes) > 1:
        raise DuplicateNodeError(nodeclaim.status.provider_id)
    if not nodes:
        raise NodeNotFoundError(nodeclaim.status.provider_id)
    return nodes[0]


# ----------------------------- event mapping -----------------------------

def _keys(nodeclaims: List[NodeClaim]) -> List[NamespacedName]:
    return [nc.key for nc in nodeclaims]


def pod_event_handler(index: IdentityIndex) -> MapFunc:
    """Map a Pod to the NodeClaims of the node it is bound to."""
    def map_pod(obj: object) -> List[NamespacedName]:
        pod: V1Pod = obj  # type: ignore[assignment]
        node_name = pod.spec.node_name if pod.spec else None
        if not node_name:
            return []
        try:
            node = index.get_node(node_name)
            if node is None or not node_provider_id(node):
                return []
            return _keys(index.nodeclaims_by_provider_id(node_provider_id(node)))
        except Exception as e:
            logger.debug(f"Mapping pod {pod.metadata.name} to nodeclaims failed: {e}")
            return []
    return map_pod


def node_event_handler(index: IdentityIndex) -> MapFunc:
    """Map a Node to the NodeClaims sharing its provider id."""
    def map_node(obj: object) -> List[NamespacedName]:
        node: V1Node = obj  # type: ignore[assignment]
        provider_id = node_provider_id(node)
        if not provider_id:
            return []
        try:
            return _keys(index.nodeclaims_by_provider_id(provider_id))
        except Exception as e:
            logger.debug(f"Mapping node {node.metadata.name} to nodeclaims failed: {e}")
            return []
    return map_node


def nodepool_event_handler(index: IdentityIndex) -> MapFunc:
    """Map a NodePool (anything with ``metadata.name``) to the NodeClaims it owns."""
    def map_nodepool(obj: object) -> List[NamespacedName]:
        name = _object_name(obj)
        if not name:
            return []
        try:
            return _keys(index.nodeclaims_by_label(NODEPOOL_LABEL_KEY, name))
        except Exception as e:
            logger.debug(f"Mapping nodepool {name} to nodeclaims failed: {e}")
            return []
    return map_nodepool


def _object_name(obj: object) -> Optional[str]:
    # NodePools come back from CustomObjectsApi as dicts.
    if isinstance(obj, dict):
        return (obj.get("metadata") or {}).get("name")
    metadata = getattr(obj, "metadata", None)
    return getattr(metadata, "name", None)


# ----------------------------- conversions -----------------------------

def new_from_node(node: V1Node) -> NodeClaim:
    """Build a pseudo NodeClaim describing a Node that has no real claim."""
    labels = dict(node.metadata.labels or {})
    status = node.status
    nodeclaim = NodeClaim(
        name=node.metadata.name,
        labels=labels,
        annotations=dict(node.metadata.annotations or {}),
        finalizers=[TERMINATION_FINALIZER],
        spec=NodeClaimSpec(
            taints=list((node.spec.taints if node.spec else None) or []),
            requirements=[
                {"key": k, "operator": "In", "values": [v]}
                for k, v in sorted(labels.items())
            ],
            resources=parse_resource_list(status.allocatable if status else None),
        ),
        status=NodeClaimStatus(
            node_name=node.metadata.name,
            provider_id=node_provider_id(node),
            capacity=parse_resource_list(status.capacity if status else None),
            allocatable=parse_resource_list(status.allocatable if status else None),
        ),
    )
    if NODE_INITIALIZED_LABEL_KEY in labels:
        nodeclaim.mark_true(CONDITION_INITIALIZED)
    nodeclaim.mark_true(CONDITION_LAUNCHED)
    nodeclaim.mark_true(CONDITION_REGISTERED)
    return nodeclaim


def update_node_owner_references(nodeclaim: NodeClaim, node: V1Node) -> V1Node:
    """Make ``nodeclaim`` a blocking owner of ``node`` and return the node."""
    if node.metadata is None:
        node.metadata = V1ObjectMeta()
    refs = list(node.metadata.owner_references or [])
    refs.append(V1OwnerReference(
        api_version=f"{GROUP}/{VERSION}",
        kind=NODECLAIM_KIND,
        name=nodeclaim.name,
        uid=nodeclaim.uid,
        block_owner_deletion=True,
    ))
    node.metadata.owner_references = refs
    return node
