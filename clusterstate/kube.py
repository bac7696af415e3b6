"""Kubernetes client configuration and the API handles the package uses."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from kubernetes import client, config

logger = logging.getLogger(__name__)


def load_config() -> None:
    """Load in-cluster config, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("Loaded kubeconfig")


@dataclass
class KubeClients:
    core: client.CoreV1Api = field(default_factory=client.CoreV1Api)
    custom: client.CustomObjectsApi = field(default_factory=client.CustomObjectsApi)
    storage: client.StorageV1Api = field(default_factory=client.StorageV1Api)

    @classmethod
    def from_environment(cls) -> "KubeClients":
        load_config()
        return cls()
