import logging

import pytest

from clusterstate.context import RequestContext, background
from clusterstate.errors import OperationCancelled
from clusterstate.options import Options, parse_duration


def test_defaults():
    opts = Options.load(environ={})
    assert opts.batch_max_duration == 10.0
    assert opts.batch_idle_duration == 1.0
    assert opts.request_timeout is None
    assert opts.log_level == "INFO"


@pytest.mark.parametrize("raw,expected", [
    (10, 10.0),
    ("2.5", 2.5),
    ("500ms", 0.5),
    ("1m30s", 90.0),
    ("1h", 3600.0),
])
def test_parse_duration(raw, expected):
    assert parse_duration(raw) == expected


@pytest.mark.parametrize("raw", ["", "ten", "10x", "5s garbage"])
def test_parse_duration_rejects_garbage(raw):
    with pytest.raises(ValueError):
        parse_duration(raw)


def test_yaml_then_environment(tmp_path):
    path = tmp_path / "clusterstate.yaml"
    path.write_text("batch_max_duration: 30s\nlog_level: debug\nrequest_timeout: 5\n")

    opts = Options.load(environ={"CLUSTERSTATE_CONFIG": str(path), "BATCH_MAX_DURATION": "1m"})

    assert opts.batch_max_duration == 60.0
    assert opts.log_level == "DEBUG"
    assert opts.request_timeout == 5.0


def test_explicit_path_wins_over_environment_variable(tmp_path):
    chosen = tmp_path / "chosen.yaml"
    chosen.write_text("batch_idle_duration: 2s\n")
    other = tmp_path / "other.yaml"
    other.write_text("batch_idle_duration: 9s\n")

    opts = Options.load(path=str(chosen), environ={"CLUSTERSTATE_CONFIG": str(other)})
    assert opts.batch_idle_duration == 2.0


def test_config_must_be_a_mapping(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ValueError):
        Options.load(path=str(path), environ={})


def test_invalid_value_names_the_key():
    with pytest.raises(ValueError, match="batch_max_duration"):
        Options.from_mapping({"batch_max_duration": "soon"})


def test_negative_duration_rejected():
    with pytest.raises(ValueError):
        Options(batch_max_duration=-1)


def test_unknown_keys_are_ignored_with_a_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="clusterstate.options"):
        opts = Options.from_mapping({"namespace": "kube-system"})
    assert opts == Options()
    assert "namespace" in caplog.text


def test_request_context():
    ctx = RequestContext(timeout=3)
    assert ctx.request_kwargs() == {"_request_timeout": 3}
    assert background().request_kwargs() == {}
    ctx.cancel.set()
    assert ctx.cancelled()
    with pytest.raises(OperationCancelled):
        ctx.check("listing nodes")
