import pytest
from urllib3.exceptions import ReadTimeoutError

from builders import make_node, make_nodeclaim, make_pod

from clusterstate.api import create_app
from clusterstate.state.cluster import Cluster


@pytest.fixture
def cluster():
    cluster = Cluster()
    cluster.update_node(make_node(name="a", provider_id="aws:///us-east-1a/i-a", allocatable={"cpu": "4"}))
    cluster.update_node(make_node(name="b", provider_id="fake:b"))
    cluster.update_nodeclaim(make_nodeclaim(name="nc-c", provider_id="fake:c", deleting=True))
    cluster.update_pod(make_pod(node_name="a", requests={"cpu": "1500m"}))
    return cluster


@pytest.fixture
def client(cluster):
    return create_app(cluster).test_client()


def test_healthz(client):
    resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok", "nodes": 3}


def test_list_nodes(client):
    resp = client.get("/nodes")
    assert resp.status_code == 200
    assert sorted(n["name"] for n in resp.get_json()["nodes"]) == ["a", "b", "nc-c"]


def test_list_nodes_by_state(client):
    active = client.get("/nodes?state=active").get_json()["nodes"]
    deleting = client.get("/nodes?state=deleting").get_json()["nodes"]
    assert sorted(n["name"] for n in active) == ["a", "b"]
    assert [n["name"] for n in deleting] == ["nc-c"]

    assert client.get("/nodes?state=bogus").status_code == 400


def test_get_node_by_provider_id(client):
    resp = client.get("/nodes/aws:///us-east-1a/i-a")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["name"] == "a"
    assert body["available"] == {"cpu": "2.5"}
    assert body["pods"] == ["default/pod-1"]


def test_unknown_node_is_404(client):
    resp = client.get("/nodes/nope")
    assert resp.status_code == 404
    assert "nope" in resp.get_json()["error"]


def test_resync_requires_a_seed(client):
    assert client.post("/resync").status_code == 501


def test_resync_rebuilds_the_store(cluster):
    def seed(target):
        target.update_node(make_node(name="fresh", provider_id="fake:fresh"))

    client = create_app(cluster, seed=seed).test_client()
    resp = client.post("/resync")

    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok", "nodes": 1}
    assert [n["name"] for n in client.get("/nodes").get_json()["nodes"]] == ["fresh"]


def test_resync_transport_failure_is_502(cluster):
    def seed(target):
        raise ReadTimeoutError(None, None, "Read timed out.")

    client = create_app(cluster, seed=seed).test_client()
    resp = client.post("/resync")

    assert resp.status_code == 502
    assert "error" in resp.get_json()
