from __future__ import annotations

import logging
import os
from typing import Optional

from clusterstate.api import create_app
from clusterstate.apis import GROUP, NODECLAIM_PLURAL, VERSION, NodeClaim
from clusterstate.context import RequestContext, background
from clusterstate.errors import ClusterStateError
from clusterstate.kube import KubeClients
from clusterstate.options import Options
from clusterstate.scheduling.volumes import VolumeResolver
from clusterstate.state.cluster import Cluster

logger = logging.getLogger(__name__)


def seed_cluster(cluster: Cluster, clients: KubeClients, ctx: Optional[RequestContext] = None) -> None:
    """Populate ``cluster`` from one list of Nodes, NodeClaims and bound Pods.

    Nodes and claims that the store rejects (duplicate provider ids, pods whose
    volumes cannot be resolved) are logged and skipped. API errors from the
    list calls themselves propagate.
    """
    ctx = ctx or background()
    ctx.check("listing nodes")
    nodes = clients.core.list_node(**ctx.request_kwargs())
    for node in nodes.items:
        try:
            cluster.update_node(node)
        except ClusterStateError as e:
            logger.warning(f"Skipping node {node.metadata.name}: {e}")

    ctx.check("listing nodeclaims")
    raw = clients.custom.list_cluster_custom_object(
        GROUP, VERSION, NODECLAIM_PLURAL, **ctx.request_kwargs()
    )
    for item in raw.get("items", []):
        cluster.update_nodeclaim(NodeClaim.from_dict(item))

    ctx.check("listing pods")
    pods = clients.core.list_pod_for_all_namespaces(
        field_selector="spec.nodeName!=", **ctx.request_kwargs()
    )
    for pod in pods.items:
        try:
            cluster.update_pod(pod, ctx)
        except ClusterStateError as e:
            logger.warning(f"Skipping pod {pod.metadata.namespace}/{pod.metadata.name}: {e}")
    logger.info(f"Seeded cluster state with {len(cluster)} nodes")


def build_app(options: Optional[Options] = None):
    """Build the Flask app over a Cluster seeded from the API server."""
    options = options or Options.load()
    logging.basicConfig(
        level=getattr(logging, options.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    clients = KubeClients.from_environment()
    cluster = Cluster(options, volume_resolver=VolumeResolver(clients.core, clients.storage))
    seed = seed_fn_for(clients, options)
    seed(cluster)
    return create_app(cluster, seed=seed)


def seed_fn_for(clients: KubeClients, options: Options):
    def seed(cluster: Cluster) -> None:
        seed_cluster(cluster, clients, RequestContext(timeout=options.request_timeout))
    return seed


if __name__ == "__main__":
    app = build_app()
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "8080")))
