import pytest

from nodeidentity.errors import ConflictError, NotFoundError
from nodeidentity.models import Node, NodeAddress
from nodeidentity.registry.base import apply_merge_patch
from nodeidentity.registry.memory import MemoryNodeRegistry


def test_get_returns_copies() -> None:
    registry = MemoryNodeRegistry([Node(name="node1", labels={"a": "1"})])
    node = registry.get("node1")
    node.labels["a"] = "changed"
    assert registry.get("node1").labels == {"a": "1"}


def test_get_missing_node_message() -> None:
    with pytest.raises(NotFoundError, match='^nodes "nope" not found$'):
        MemoryNodeRegistry().get("nope")


def test_patch_bumps_resource_version_and_checks_precondition() -> None:
    registry = MemoryNodeRegistry([Node(name="node1")])
    before = registry.get("node1").resource_version

    after = registry.patch("node1", {"metadata": {"labels": {"x": "y"}, "resourceVersion": before}})
    assert after.resource_version != before
    assert after.labels == {"x": "y"}

    with pytest.raises(ConflictError, match="the object has been modified"):
        registry.patch("node1", {"metadata": {"labels": {"x": "z"}, "resourceVersion": before}})


def test_add_accepts_kubernetes_json() -> None:
    registry = MemoryNodeRegistry(
        [
            {
                "apiVersion": "v1",
                "kind": "Node",
                "metadata": {"name": "node-a", "labels": {"role": "worker"}},
                "status": {"addresses": [{"type": "InternalIP", "address": "10.0.0.1"}]},
            }
        ]
    )
    node = registry.get("node-a")
    assert node.labels == {"role": "worker"}
    assert node.addresses == [NodeAddress("InternalIP", "10.0.0.1")]
    assert registry.names() == ["node-a"]


def test_apply_merge_patch_removes_null_keys() -> None:
    target = {"metadata": {"labels": {"a": "1", "b": "2"}}, "spec": {"x": 1}}
    patched = apply_merge_patch(target, {"metadata": {"labels": {"a": None, "c": "3"}}})
    assert patched == {"metadata": {"labels": {"b": "2", "c": "3"}}, "spec": {"x": 1}}
    assert target["metadata"]["labels"] == {"a": "1", "b": "2"}
