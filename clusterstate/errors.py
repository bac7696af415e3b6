"""Error taxonomy for the cluster state cache.

Every error carries the structured context (provider id, node name, pod key)
needed to log it without re-deriving anything. Callers classify errors with
``isinstance`` or the ``is_*`` predicates, never by message text.
"""

from __future__ import annotations

from typing import List, Optional


class ClusterStateError(Exception):
    """Base class for all errors raised by this package."""


class NodeNotFoundError(ClusterStateError):
    """No Node matches a resolved provider id."""

    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        super().__init__(f"no nodes found for provider id '{provider_id}'")


class DuplicateNodeError(ClusterStateError):
    """More than one Node reports the same provider id."""

    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        super().__init__(f"multiple nodes found for provider id '{provider_id}'")


class OperationCancelled(ClusterStateError):
    """The request context was cancelled before an external call was made."""

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"{operation}: cancelled")


class VolumeResolutionError(ClusterStateError):
    """A pod's volumes could not be resolved, so none of its usage was recorded."""

    def __init__(self, pod_key: str, cause: Exception) -> None:
        self.pod_key = pod_key
        self.cause = cause
        super().__init__(f"tracking volume usage for pod {pod_key}, {cause}")


class TaintPatchError(ClusterStateError):
    """Fetching or patching a single node during taint enforcement failed."""

    def __init__(self, node_name: str, action: str, cause: Exception) -> None:
        self.node_name = node_name
        self.action = action
        self.cause = cause
        super().__init__(f"{action} node {node_name}, {cause}")


class SchedulingPauseError(ClusterStateError):
    """Aggregate of every per-node failure from one taint enforcement batch."""

    def __init__(self, errors: List[TaintPatchError]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(str(e) for e in self.errors))

    @property
    def node_names(self) -> List[str]:
        return [e.node_name for e in self.errors]


def combine_errors(errors: List[TaintPatchError]) -> Optional[SchedulingPauseError]:
    if not errors:
        return None
    return SchedulingPauseError(errors)
