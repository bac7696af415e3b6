"""Arithmetic over resource-quantity maps.

A ``ResourceList`` maps a resource name (``cpu``, ``memory``,
``nvidia.com/gpu`` ...) to an exact ``Decimal`` quantity. Quantity strings
from the API server are parsed with the Kubernetes client's own
``parse_quantity`` so ``"100m"`` and ``"0.1"`` compare equal.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Iterable, Mapping, Optional

from kubernetes.client import V1Container, V1Pod
from kubernetes.utils import parse_quantity

ResourceList = Dict[str, Decimal]


def parse_resource_list(raw: Optional[Mapping[str, Any]]) -> ResourceList:
    """Parse ``{"cpu": "100m", "memory": "1Gi"}`` style maps into Decimals."""
    if not raw:
        return {}
    out: ResourceList = {}
    for name, value in raw.items():
        if isinstance(value, Decimal):
            out[name] = value
        else:
            out[name] = parse_quantity(value)
    return out


def to_string_map(resources: Optional[Mapping[str, Decimal]]) -> Dict[str, str]:
    """Inverse of ``parse_resource_list`` for serialization and logging."""
    if not resources:
        return {}
    return {name: format(qty.normalize(), "f") for name, qty in resources.items()}


def is_zero(quantity: Optional[Decimal]) -> bool:
    return quantity is None or quantity == 0


def merge(*resource_lists: Optional[Mapping[str, Decimal]]) -> ResourceList:
    """Sum resource lists component-wise into a new dict."""
    result: ResourceList = {}
    for rl in resource_lists:
        merge_into(result, rl)
    return result


def merge_into(dest: Optional[ResourceList], src: Optional[Mapping[str, Decimal]]) -> ResourceList:
    """Accumulate ``src`` into ``dest`` (allocated when None) and return it."""
    if dest is None:
        dest = {}
    if not src:
        return dest
    for name, qty in src.items():
        dest[name] = dest.get(name, Decimal(0)) + qty
    return dest


def subtract(lhs: Optional[Mapping[str, Decimal]], rhs: Optional[Mapping[str, Decimal]]) -> ResourceList:
    """``lhs - rhs`` over the resources present in ``lhs``.

    Results are not clamped at zero; a negative value means the node is
    over-committed on that resource.
    """
    result: ResourceList = {}
    rhs = rhs or {}
    for name, qty in (lhs or {}).items():
        result[name] = qty - rhs.get(name, Decimal(0))
    return result


def max_resources(*resource_lists: Optional[Mapping[str, Decimal]]) -> ResourceList:
    result: ResourceList = {}
    for rl in resource_lists:
        for name, qty in (rl or {}).items():
            if name not in result or qty > result[name]:
                result[name] = qty
    return result


def fits(candidate: Mapping[str, Decimal], total: Mapping[str, Decimal]) -> bool:
    """True when every quantity in ``candidate`` is covered by ``total``."""
    for name, qty in candidate.items():
        if qty > total.get(name, Decimal(0)):
            return False
    return True


def _container_resources(containers: Optional[Iterable[V1Container]], attr: str) -> Iterable[ResourceList]:
    for container in containers or []:
        requirements = container.resources
        if requirements is None:
            yield {}
            continue
        yield parse_resource_list(getattr(requirements, attr))


def _ceiling(pod: V1Pod, attr: str) -> ResourceList:
    # Init containers run one at a time before the regular containers, so the
    # effective footprint is the larger of their peak and the steady state.
    spec = pod.spec
    if spec is None:
        return {}
    steady = merge(*_container_resources(spec.containers, attr))
    init_peak = max_resources(*_container_resources(spec.init_containers, attr))
    return merge(max_resources(steady, init_peak), parse_resource_list(spec.overhead))


def requests_for_pods(*pods: V1Pod) -> ResourceList:
    return merge(*(_ceiling(pod, "requests") for pod in pods))


def limits_for_pods(*pods: V1Pod) -> ResourceList:
    return merge(*(_ceiling(pod, "limits") for pod in pods))
