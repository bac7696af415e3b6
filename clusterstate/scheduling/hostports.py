"""Host port usage per node.

A host port is scarce on a node: two pods cannot bind the same
(address, port, protocol) triple. ``HostPortUsage`` remembers which pod holds
which ports so the scheduler can reject a conflicting placement.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from kubernetes.client import V1Pod

from clusterstate.apis import NamespacedName
from clusterstate.utils.pod import pod_key

_UNSPECIFIED_IPS = ("", "0.0.0.0", "::")


@dataclass(frozen=True)
class HostPort:
    ip: str
    port: int
    protocol: str = "TCP"

    def matches(self, other: "HostPort") -> bool:
        if self.protocol != other.protocol or self.port != other.port:
            return False
        # An unspecified address binds every interface and overlaps anything.
        if self.ip in _UNSPECIFIED_IPS or other.ip in _UNSPECIFIED_IPS:
            return True
        return self.ip == other.ip

    def __str__(self) -> str:
        return f"IP={self.ip or '0.0.0.0'} Port={self.port} Proto={self.protocol}"


def get_host_ports(pod: V1Pod) -> List[HostPort]:
    ports: List[HostPort] = []
    spec = pod.spec
    if spec is None:
        return ports
    for container in list(spec.init_containers or []) + list(spec.containers or []):
        for port in container.ports or []:
            if not port.host_port:
                continue
            ports.append(HostPort(
                ip=port.host_ip or "0.0.0.0",
                port=int(port.host_port),
                protocol=port.protocol or "TCP",
            ))
    return ports


class HostPortUsage:
    def __init__(self) -> None:
        self._reserved: Dict[NamespacedName, List[HostPort]] = {}

    def add(self, pod: V1Pod, ports: List[HostPort]) -> None:
        self._reserved[pod_key(pod)] = list(ports)

    def conflicts(self, pod: V1Pod, ports: List[HostPort]) -> Optional[HostPort]:
        """Return an already reserved port that ``ports`` would collide with."""
        used_by = pod_key(pod)
        for new_entry in ports:
            for key, entries in self._reserved.items():
                if key == used_by:
                    continue
                for existing in entries:
                    if new_entry.matches(existing):
                        return existing
        return None

    def delete_pod(self, key: NamespacedName) -> None:
        self._reserved.pop(key, None)

    def ports_for(self, key: NamespacedName) -> List[HostPort]:
        return list(self._reserved.get(key, []))

    def update(self, other: "HostPortUsage") -> None:
        """Take over every reservation held in ``other``."""
        for key, entries in other._reserved.items():
            self._reserved[key] = list(entries)

    def copy(self) -> "HostPortUsage":
        out = HostPortUsage()
        out._reserved = {k: list(v) for k, v in self._reserved.items()}
        return out

    def __len__(self) -> int:
        return len(self._reserved)

    def __contains__(self, key: object) -> bool:
        return key in self._reserved
