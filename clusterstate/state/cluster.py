"""The shared store of StateNodes fed by the Node, NodeClaim and Pod watches.

Entries are keyed by provider id, or by node name for a Node whose provider
id is not known yet. Each entry carries its own lock; ``_lock`` guards only
the dicts. Locks are always taken map first, entry second, and nothing that
holds an entry lock waits on the map lock. No network I/O happens under
either lock.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from kubernetes.client import V1Node, V1Pod

from clusterstate.apis import NamespacedName, NodeClaim
from clusterstate.context import RequestContext, background
from clusterstate.errors import DuplicateNodeError
from clusterstate.index import node_provider_id
from clusterstate.options import Options
from clusterstate.scheduling.volumes import Volumes
from clusterstate.state.statenode import StateNode, StateNodes, VolumeResolverFn
from clusterstate.utils.pod import is_terminal, pod_key

logger = logging.getLogger(__name__)


def _no_volumes(pod: V1Pod, ctx: Optional[RequestContext] = None) -> Volumes:
    return Volumes()


class _Entry:
    __slots__ = ("lock", "state")

    def __init__(self, state: StateNode) -> None:
        self.lock = threading.Lock()
        self.state = state


class Cluster:
    """Concurrent cache of every machine in the cluster.

    Args:
        options: runtime options; the nomination window derives from them.
        volume_resolver: callable turning a pod into its ``Volumes``. Without
            one, volume usage is not tracked.
    """

    def __init__(
        self,
        options: Optional[Options] = None,
        volume_resolver: Optional[VolumeResolverFn] = None,
    ) -> None:
        self.options = options or Options()
        self._volume_resolver = volume_resolver or _no_volumes
        self._lock = threading.RLock()
        self._entries: Dict[str, _Entry] = {}
        self._node_keys: Dict[str, str] = {}  # node name -> entry key
        self._claim_keys: Dict[str, str] = {}  # nodeclaim name -> entry key
        self._bindings: Dict[NamespacedName, str] = {}  # pod -> node name

    # -------- nodes --------

    def update_node(self, node: V1Node) -> None:
        """Create or refresh the entry for ``node``.

        Raises:
            DuplicateNodeError: another Node already holds this provider id.
        """
        name = node.metadata.name
        key = node_provider_id(node) or name
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry(StateNode(node=node))
                self._entries[key] = entry
                logger.info(f"Tracking node {name} as {key}")
            with entry.lock:
                current = entry.state.node
                if current is not None and current.metadata.name != name:
                    logger.warning(
                        f"Node {name} reports provider id {key} already held by node {current.metadata.name}"
                    )
                    raise DuplicateNodeError(key)
                entry.state.node = node
                old_key = self._node_keys.get(name)
                if old_key is not None and old_key != key:
                    self._move_node(name, old_key, entry)
            self._node_keys[name] = key

    def _move_node(self, name: str, old_key: str, target: _Entry) -> None:
        # Caller holds the map lock and target.lock.
        old = self._entries.get(old_key)
        if old is None or old is target:
            return
        with old.lock:
            target.state.take_usage_from(old.state)
            for key in old.state.pod_keys():
                old.state.cleanup_for_pod(key)
            old.state.node = None
            if old.state.nodeclaim is None:
                del self._entries[old_key]
        logger.info(f"Re-keyed node {name} from {old_key}")

    def delete_node(self, name: str) -> None:
        with self._lock:
            key = self._node_keys.pop(name, None)
            entry = self._entries.get(key) if key is not None else None
            if entry is None:
                return
            with entry.lock:
                if entry.state.nodeclaim is None:
                    del self._entries[key]
                else:
                    for pod in entry.state.pod_keys():
                        entry.state.cleanup_for_pod(pod)
                    entry.state.node = None
            self._bindings = {p: n for p, n in self._bindings.items() if n != name}
        logger.info(f"Stopped tracking node {name}")

    # -------- nodeclaims --------

    def update_nodeclaim(self, nodeclaim: NodeClaim) -> None:
        key = nodeclaim.status.provider_id
        if not key:
            logger.debug(f"Nodeclaim {nodeclaim.name} has no provider id yet, not tracking")
            return
        with self._lock:
            old_key = self._claim_keys.get(nodeclaim.name)
            if old_key is not None and old_key != key:
                self._detach_nodeclaim(old_key)
            entry = self._entries.get(key)
            if entry is None:
                self._entries[key] = _Entry(StateNode(nodeclaim=nodeclaim))
                logger.info(f"Tracking nodeclaim {nodeclaim.name} as {key}")
            else:
                with entry.lock:
                    entry.state.nodeclaim = nodeclaim
            self._claim_keys[nodeclaim.name] = key

    def delete_nodeclaim(self, name: str) -> None:
        with self._lock:
            key = self._claim_keys.pop(name, None)
            if key is None:
                return
            self._detach_nodeclaim(key)
        logger.info(f"Stopped tracking nodeclaim {name}")

    def _detach_nodeclaim(self, key: str) -> None:
        entry = self._entries.get(key)
        if entry is None:
            return
        with entry.lock:
            if entry.state.node is None:
                del self._entries[key]
            else:
                entry.state.nodeclaim = None

    # -------- pods --------

    def update_pod(self, pod: V1Pod, ctx: Optional[RequestContext] = None) -> None:
        """Bind ``pod`` to its node's ledgers, or unbind it once it is terminal.

        Raises:
            VolumeResolutionError: the pod's volumes could not be resolved; the
                node's ledgers are left as they were.
            OperationCancelled: ``ctx`` was cancelled.
        """
        key = pod_key(pod)
        node_name = pod.spec.node_name if pod.spec else None
        if not node_name or is_terminal(pod):
            self.delete_pod(key)
            return

        entry = self._entry_for_node(node_name)
        volumes = None
        if entry is not None:
            # Resolved before any lock is taken; this is the only network I/O.
            ctx = ctx or background()
            ctx.check("updating pod usage")
            volumes = self._volume_resolver(pod, ctx)

        with self._lock:
            previous = self._bindings.get(key)
        if previous is not None and previous != node_name:
            self._cleanup_on(previous, key)

        if entry is None:
            logger.debug(f"Pod {key} is bound to untracked node {node_name}, skipping")
            return
        with entry.lock:
            entry.state.record_pod(pod, volumes)
        with self._lock:
            self._bindings[key] = node_name

    def delete_pod(self, key: NamespacedName) -> None:
        with self._lock:
            node_name = self._bindings.pop(key, None)
        if node_name is not None:
            self._cleanup_on(node_name, key)

    def _cleanup_on(self, node_name: str, key: NamespacedName) -> None:
        entry = self._entry_for_node(node_name)
        if entry is None:
            return
        with entry.lock:
            entry.state.cleanup_for_pod(key)

    def _entry_for_node(self, node_name: str) -> Optional[_Entry]:
        with self._lock:
            key = self._node_keys.get(node_name)
            return self._entries.get(key) if key is not None else None

    # -------- reads and advisory state --------

    @contextmanager
    def locked(self, key: str) -> Iterator[StateNode]:
        """Hold the lock of one entry and yield its live StateNode.

        The entry lock is not reentrant and other writers wait on it while
        holding the store lock, so the body must not call back into this
        Cluster (``node``, ``nodes``, ``update_*``, ...) and should not block.

        Raises:
            KeyError: nothing is tracked under ``key``.
        """
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            raise KeyError(key)
        with entry.lock:
            yield entry.state

    def nodes(self) -> StateNodes:
        """Point-in-time copies of every tracked StateNode."""
        with self._lock:
            entries = list(self._entries.values())
        out = StateNodes()
        for entry in entries:
            with entry.lock:
                out.append(entry.state.deep_copy())
        return out

    def node(self, key: str) -> Optional[StateNode]:
        try:
            with self.locked(key) as state:
                return state.deep_copy()
        except KeyError:
            return None

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def nominate(self, key: str) -> None:
        try:
            with self.locked(key) as state:
                state.nominate(self.options)
        except KeyError:
            logger.debug(f"Cannot nominate untracked node {key}")

    def mark_for_deletion(self, *keys: str) -> None:
        for key in keys:
            try:
                with self.locked(key) as state:
                    state.mark_for_deletion()
            except KeyError:
                logger.debug(f"Cannot mark untracked node {key} for deletion")

    def unmark_for_deletion(self, *keys: str) -> None:
        for key in keys:
            try:
                with self.locked(key) as state:
                    state.unmark_for_deletion()
            except KeyError:
                logger.debug(f"Cannot unmark untracked node {key}")

    def reset(self) -> None:
        """Forget everything; the watches repopulate the store."""
        with self._lock:
            self._entries.clear()
            self._node_keys.clear()
            self._claim_keys.clear()
            self._bindings.clear()
        logger.info("Cluster state reset")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
