"""Pod lookups for a node, backed by the API server."""

from __future__ import annotations

import logging
from typing import List, Optional

from kubernetes.client import CoreV1Api, V1Node, V1Pod

from clusterstate.context import RequestContext, background
from clusterstate.utils.pod import is_reschedulable

logger = logging.getLogger(__name__)


class PodLister:
    """Lists the pods bound to a node.

    ``StateNode.pods`` and ``StateNodes.pods`` delegate here; any object with
    the same two methods can stand in for it.
    """

    def __init__(self, core_api: CoreV1Api) -> None:
        self.core_api = core_api

    def get_pods(self, node: V1Node, ctx: Optional[RequestContext] = None) -> List[V1Pod]:
        ctx = ctx or background()
        ctx.check("listing pods")
        pods = self.core_api.list_pod_for_all_namespaces(
            field_selector=f"spec.nodeName={node.metadata.name}",
            **ctx.request_kwargs(),
        )
        logger.debug(f"Listed {len(pods.items)} pods on node {node.metadata.name}")
        return list(pods.items)

    def get_reschedulable_pods(self, node: V1Node, ctx: Optional[RequestContext] = None) -> List[V1Pod]:
        return [p for p in self.get_pods(node, ctx) if is_reschedulable(p)]
