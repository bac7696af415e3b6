from unittest.mock import MagicMock

import pytest

from builders import make_node, make_nodeclaim, make_pod

from clusterstate.apis import NamespacedName
from clusterstate.errors import DuplicateNodeError, NodeNotFoundError
from clusterstate.index import IdentityIndex
from clusterstate.resources import parse_resource_list
from clusterstate.utils.nodeclaim import (
    all_nodes_for_nodeclaim,
    ignore_duplicate_node_error,
    ignore_node_not_found_error,
    is_duplicate_node_error,
    is_node_not_found_error,
    new_from_node,
    node_event_handler,
    node_for_nodeclaim,
    nodepool_event_handler,
    pod_event_handler,
    update_node_owner_references,
)


@pytest.fixture
def index():
    idx = IdentityIndex()
    idx.upsert_node(make_node(name="node-1", provider_id="pid-1"))
    idx.upsert_node(make_node(name="node-2", provider_id="pid-2"))
    idx.upsert_node(make_node(name="node-2b", provider_id="pid-2"))
    idx.upsert_node(make_node(name="unresolved"))
    idx.upsert_nodeclaim(make_nodeclaim(name="nc-1", provider_id="pid-1", labels={"karpenter.sh/nodepool": "default"}))
    idx.upsert_nodeclaim(make_nodeclaim(name="nc-2", provider_id="pid-2", labels={"karpenter.sh/nodepool": "gpu"}))
    idx.upsert_nodeclaim(make_nodeclaim(name="nc-3", labels={"karpenter.sh/nodepool": "default"}))
    return idx


def test_resolves_single_node(index):
    node = node_for_nodeclaim(index, make_nodeclaim(provider_id="pid-1"))
    assert node.metadata.name == "node-1"


def test_no_node_for_resolved_provider_id():
    with pytest.raises(NodeNotFoundError) as exc_info:
        node_for_nodeclaim(IdentityIndex(), make_nodeclaim(provider_id="pid-1"))
    assert exc_info.value.provider_id == "pid-1"
    assert is_node_not_found_error(exc_info.value)
    assert ignore_node_not_found_error(exc_info.value) is None


def test_duplicate_nodes_for_provider_id():
    index = IdentityIndex()
    index.upsert_node(make_node(name="a", provider_id="pid-1"))
    index.upsert_node(make_node(name="b", provider_id="pid-1"))
    with pytest.raises(DuplicateNodeError) as exc_info:
        node_for_nodeclaim(index, make_nodeclaim(provider_id="pid-1"))
    assert exc_info.value.provider_id == "pid-1"
    assert is_duplicate_node_error(exc_info.value)
    assert not is_node_not_found_error(exc_info.value)


def test_unresolved_claim_maps_to_nothing(index):
    assert all_nodes_for_nodeclaim(index, make_nodeclaim(provider_id="")) == []


def test_ignore_helpers_pass_other_errors_through():
    other = RuntimeError("boom")
    assert ignore_node_not_found_error(other) is other
    assert ignore_duplicate_node_error(other) is other
    assert ignore_duplicate_node_error(DuplicateNodeError("pid")) is None
    assert ignore_node_not_found_error(None) is None


def test_pod_event_handler(index):
    mapper = pod_event_handler(index)
    assert mapper(make_pod(node_name="node-1")) == [NamespacedName("", "nc-1")]
    assert mapper(make_pod(node_name="unresolved")) == []
    assert mapper(make_pod(node_name=None)) == []
    assert mapper(make_pod(node_name="missing")) == []


def test_node_event_handler(index):
    mapper = node_event_handler(index)
    assert mapper(make_node(provider_id="pid-2")) == [NamespacedName("", "nc-2")]
    assert mapper(make_node()) == []


def test_nodepool_event_handler(index):
    mapper = nodepool_event_handler(index)
    assert sorted(mapper({"metadata": {"name": "default"}})) == [
        NamespacedName("", "nc-1"),
        NamespacedName("", "nc-3"),
    ]
    assert mapper({"metadata": {}}) == []


def test_event_handlers_fail_open():
    broken = MagicMock()
    broken.get_node.side_effect = RuntimeError("index unavailable")
    broken.nodeclaims_by_provider_id.side_effect = RuntimeError("index unavailable")
    broken.nodeclaims_by_label.side_effect = RuntimeError("index unavailable")

    assert pod_event_handler(broken)(make_pod(node_name="node-1")) == []
    assert node_event_handler(broken)(make_node(provider_id="pid-1")) == []
    assert nodepool_event_handler(broken)({"metadata": {"name": "default"}}) == []


def test_new_from_node():
    node = make_node(
        name="node-1",
        provider_id="pid-1",
        labels={"zone": "a", "arch": "amd64"},
        initialized=True,
        capacity={"cpu": "4"},
        allocatable={"cpu": "3800m"},
    )
    nc = new_from_node(node)

    assert nc.name == "node-1"
    assert nc.status.provider_id == "pid-1"
    assert nc.status.node_name == "node-1"
    assert nc.status.capacity == parse_resource_list({"cpu": "4"})
    assert nc.spec.resources == parse_resource_list({"cpu": "3800m"})
    assert nc.spec.requirements[0] == {"key": "arch", "operator": "In", "values": ["amd64"]}
    assert nc.finalizers == ["karpenter.sh/termination"]
    for condition in ("Launched", "Registered", "Initialized"):
        assert nc.get_condition(condition).is_true()


def test_new_from_uninitialized_node_is_not_initialized():
    nc = new_from_node(make_node(provider_id="pid-1"))
    assert nc.get_condition("Initialized") is None
    assert nc.get_condition("Registered").is_true()


def test_update_node_owner_references():
    node = update_node_owner_references(make_nodeclaim(name="nc-1"), make_node())
    (ref,) = node.metadata.owner_references
    assert ref.kind == "NodeClaim"
    assert ref.api_version == "karpenter.sh/v1beta1"
    assert ref.name == "nc-1"
    assert ref.uid == "uid-nc-1"
    assert ref.block_owner_deletion is True
