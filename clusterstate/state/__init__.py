"""The cluster state cache: StateNodes, the store that owns them, taint enforcement."""

from clusterstate.state.cluster import Cluster
from clusterstate.state.statenode import (
    Representation,
    StateNode,
    StateNodes,
    nomination_window,
)
from clusterstate.state.taints import set_scheduling_paused

__all__ = [
    'Cluster',
    'Representation',
    'StateNode',
    'StateNodes',
    'nomination_window',
    'set_scheduling_paused',
]
