"""In-memory lookup index over Nodes and NodeClaims.

Watch handlers keep the index current with ``upsert_*`` / ``delete_*``;
``sync`` performs a full relist through the API server. Lookups are exact
matches on provider id, node name or a single label, which is all identity
resolution and event mapping need.
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Optional

from kubernetes.client import CoreV1Api, CustomObjectsApi, V1Node

from clusterstate.apis import GROUP, NODECLAIM_PLURAL, VERSION, NodeClaim
from clusterstate.context import RequestContext, background

logger = logging.getLogger(__name__)


def node_provider_id(node: V1Node) -> str:
    if node.spec is None:
        return ""
    return node.spec.provider_id or ""


class IdentityIndex:
    """Thread-safe index. Returned objects are shared; treat them as read-only."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._nodes: Dict[str, V1Node] = {}
        self._nodeclaims: Dict[str, NodeClaim] = {}

    # -------- writes --------

    def upsert_node(self, node: V1Node) -> None:
        with self._lock:
            self._nodes[node.metadata.name] = node

    def delete_node(self, name: str) -> None:
        with self._lock:
            self._nodes.pop(name, None)

    def upsert_nodeclaim(self, nodeclaim: NodeClaim) -> None:
        with self._lock:
            self._nodeclaims[nodeclaim.name] = nodeclaim

    def delete_nodeclaim(self, name: str) -> None:
        with self._lock:
            self._nodeclaims.pop(name, None)

    def sync(
        self,
        core_api: CoreV1Api,
        custom_api: CustomObjectsApi,
        ctx: Optional[RequestContext] = None,
    ) -> None:
        """Replace the index contents with a fresh list from the API server."""
        ctx = ctx or background()
        ctx.check("listing nodes")
        nodes = core_api.list_node(**ctx.request_kwargs())
        ctx.check("listing nodeclaims")
        raw = custom_api.list_cluster_custom_object(
            GROUP, VERSION, NODECLAIM_PLURAL, **ctx.request_kwargs()
        )
        nodeclaims = [NodeClaim.from_dict(item) for item in raw.get("items", [])]
        with self._lock:
            self._nodes = {n.metadata.name: n for n in nodes.items}
            self._nodeclaims = {nc.name: nc for nc in nodeclaims}
        logger.info(f"Synced identity index: {len(nodes.items)} nodes, {len(nodeclaims)} nodeclaims")

    # -------- reads --------

    def get_node(self, name: str) -> Optional[V1Node]:
        with self._lock:
            return self._nodes.get(name)

    def get_nodeclaim(self, name: str) -> Optional[NodeClaim]:
        with self._lock:
            return self._nodeclaims.get(name)

    def nodes_by_provider_id(self, provider_id: str) -> List[V1Node]:
        with self._lock:
            return [n for n in self._nodes.values() if node_provider_id(n) == provider_id]

    def nodeclaims_by_provider_id(self, provider_id: str) -> List[NodeClaim]:
        with self._lock:
            return [nc for nc in self._nodeclaims.values() if nc.status.provider_id == provider_id]

    def nodeclaims_by_label(self, key: str, value: str) -> List[NodeClaim]:
        with self._lock:
            return [nc for nc in self._nodeclaims.values() if nc.labels.get(key) == value]

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes) + len(self._nodeclaims)
