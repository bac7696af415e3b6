"""Node-local usage ledgers and taint helpers."""

from clusterstate.scheduling.hostports import HostPort, HostPortUsage, get_host_ports
from clusterstate.scheduling.taints import KNOWN_EPHEMERAL_TAINTS, match_taint, taint_in
from clusterstate.scheduling.volumes import (
    VolumeResolver,
    VolumeUsage,
    Volumes,
    get_volume_limits,
    get_volumes,
)

__all__ = [
    'HostPort',
    'HostPortUsage',
    'get_host_ports',
    'KNOWN_EPHEMERAL_TAINTS',
    'match_taint',
    'taint_in',
    'VolumeResolver',
    'VolumeUsage',
    'Volumes',
    'get_volume_limits',
    'get_volumes',
]
