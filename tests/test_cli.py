import json
import logging
from pathlib import Path

import pytest
import structlog

from nodeidentity import cli
from nodeidentity.identity.labels import CLUSTER_NAME_LABEL, PLATFORM_LABEL
from nodeidentity.models import Node
from nodeidentity.registry.memory import MemoryNodeRegistry


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    structlog.reset_defaults()
    logging.getLogger().handlers.clear()


def _use_registry(monkeypatch: pytest.MonkeyPatch, registry: MemoryNodeRegistry) -> None:
    monkeypatch.setattr(cli, "KubectlNodeRegistry", lambda **_kwargs: registry)


def test_classify_command(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    addresses = tmp_path / "addresses.json"
    addresses.write_text(
        json.dumps(
            [
                {"address": "192.168.0.1/24"},
                {"address": "1.2.3.4/24"},
                {"address": "2001:1234::1/128"},
            ]
        ),
        encoding="utf-8",
    )
    rc = cli.main(
        ["classify", "--platform", "metal", "--provided-ip", "192.168.0.1", "--addresses", str(addresses), "--prefer-ipv6"]
    )
    assert rc == 0
    assert json.loads(capsys.readouterr().out) == [
        {"type": "InternalIP", "address": "192.168.0.1"},
        {"type": "ExternalIP", "address": "2001:1234::1"},
        {"type": "ExternalIP", "address": "1.2.3.4"},
    ]


def test_classify_invalid_ip_exits_2(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    addresses = tmp_path / "addresses.json"
    addresses.write_text("[]", encoding="utf-8")
    rc = cli.main(["classify", "--platform", "metal", "--provided-ip", "bogus", "--addresses", str(addresses)])
    assert rc == 2
    assert capsys.readouterr().err.startswith("ERROR: invalid IP address")


def test_sync_labels_command(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    registry = MemoryNodeRegistry([Node(name="node1", labels={"team": "infra"})])
    _use_registry(monkeypatch, registry)
    monkeypatch.setenv("NODEIDENTITY_CLUSTER_NAME", "test-cluster")
    metadata = tmp_path / "meta.json"
    metadata.write_text(json.dumps({"platform": "metal", "hostname": "node1"}), encoding="utf-8")

    assert cli.main(["sync-labels", "--node", "node1", "--metadata", str(metadata)]) == 0
    assert capsys.readouterr().out.strip() == "patched"
    assert registry.get("node1").labels == {
        "team": "infra",
        CLUSTER_NAME_LABEL: "test-cluster",
        PLATFORM_LABEL: "metal",
    }

    assert cli.main(["sync-labels", "--node", "node1", "--metadata", str(metadata)]) == 0
    assert capsys.readouterr().out.strip() == "unchanged"


def test_csr_check_exit_codes(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
    registry: MemoryNodeRegistry,
    make_csr_object,
) -> None:
    _use_registry(monkeypatch, registry)
    trace = tmp_path / "trace.jsonl"

    cases = [
        (make_csr_object("node-int-ext", ip_addresses=["1.2.3.4", "2000::1"]), 0, "approve"),
        (make_csr_object("node-int-ext", ip_addresses=["1.2.3.4", "9.9.9.9"]), 1, "deny"),
        (make_csr_object("node-non-existing"), 2, "error"),
    ]
    for index, (csr, expected_rc, decision) in enumerate(cases):
        path = tmp_path / f"csr{index}.json"
        path.write_text(json.dumps(csr), encoding="utf-8")
        rc = cli.main(["csr-check", "--csr", str(path), "--trace", str(trace)])
        assert rc == expected_rc
        assert json.loads(capsys.readouterr().out)["decision"] == decision

    assert len(trace.read_text(encoding="utf-8").splitlines()) == 3


def test_csr_check_disabled_by_config(
    tmp_path: Path, capsys: pytest.CaptureFixture[str], make_csr_object
) -> None:
    config = tmp_path / "ccm.yaml"
    config.write_text("features:\n  approveNodeCSR: false\n", encoding="utf-8")
    csr = tmp_path / "csr.json"
    csr.write_text(json.dumps(make_csr_object("node1")), encoding="utf-8")

    assert cli.main(["csr-check", "--csr", str(csr), "--config", str(config)]) == 2
    assert "disabled" in capsys.readouterr().err
