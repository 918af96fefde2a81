import json

import pytest

from dockmachine.engine.daemon_config import DOCKER_SOCKET, DaemonConfig
from dockmachine.errors import MachineError


def test_fresh_config_listens_on_local_socket():
    cfg = DaemonConfig.fresh()
    assert cfg.hosts == [DOCKER_SOCKET]
    assert json.loads(cfg.to_json()) == {"hosts": [DOCKER_SOCKET]}


def test_add_host_deduplicates_and_keeps_order():
    cfg = DaemonConfig.fresh()
    cfg.add_host("tcp://0.0.0.0:2376", DOCKER_SOCKET, "tcp://0.0.0.0:2376")
    assert cfg.hosts == [DOCKER_SOCKET, "tcp://0.0.0.0:2376"]


def test_hyphenated_keys_round_trip_and_unknown_keys_survive():
    raw = b'{"data-root": "/mnt/docker", "log-opts": {"max-size": "10m"}, "insecure-registries": ["r:5000"]}'
    cfg = DaemonConfig.from_json(raw)
    assert cfg.data_root == "/mnt/docker"

    cfg.enable_tls("/etc/docker/ca.pem", "/etc/docker/server-cert.pem", "/etc/docker/server-key.pem")
    out = json.loads(cfg.to_json())
    assert out["data-root"] == "/mnt/docker"
    assert out["log-opts"] == {"max-size": "10m"}
    assert out["insecure-registries"] == ["r:5000"]
    assert out["tlsverify"] is True
    assert "tls" not in out and "data_root" not in out


def test_empty_remote_file_means_default_config():
    assert DaemonConfig.from_json(b"  \n").hosts == []


def test_garbage_is_reported():
    with pytest.raises(MachineError):
        DaemonConfig.from_json(b"{not json")
