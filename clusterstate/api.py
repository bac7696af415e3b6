from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

from flask import Flask, jsonify, request
from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import HTTPError

from clusterstate.errors import ClusterStateError
from clusterstate.state.cluster import Cluster

logger = logging.getLogger(__name__)


def create_app(cluster: Cluster, seed: Optional[Callable[[Cluster], None]] = None) -> Flask:
    app = Flask(__name__)
    # Provider ids contain empty path segments (aws:///zone/id).
    app.url_map.merge_slashes = False
    app.config['cluster'] = cluster
    app.config['seed'] = seed

    @app.get("/healthz")
    def healthz() -> Any:
        return jsonify({"status": "ok", "nodes": len(app.config['cluster'])})

    @app.get("/nodes")
    def list_nodes() -> Any:
        nodes = app.config['cluster'].nodes()
        state = request.args.get("state")
        if state == "active":
            nodes = nodes.active()
        elif state == "deleting":
            nodes = nodes.deleting()
        elif state:
            return jsonify({"error": f"unknown state filter: {state}"}), 400
        now = time.time()
        return jsonify({"nodes": [n.to_dict(now) for n in nodes]})

    @app.get("/nodes/<path:key>")
    def get_node(key: str) -> Any:
        node = app.config['cluster'].node(key)
        if node is None:
            return jsonify({"error": f"node {key} not found"}), 404
        return jsonify(node.to_dict())

    @app.post("/resync")
    def resync() -> Any:
        seed_fn = app.config['seed']
        if seed_fn is None:
            return jsonify({"error": "resync is not configured"}), 501
        cluster = app.config['cluster']
        cluster.reset()
        try:
            seed_fn(cluster)
        except (ApiException, HTTPError, ClusterStateError) as e:
            logger.error(f"Resync failed: {e}")
            return jsonify({"error": str(e)}), 502
        return jsonify({"status": "ok", "nodes": len(cluster)})

    return app
