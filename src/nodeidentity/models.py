from __future__ import annotations

from dataclasses import dataclass, field

from nodeidentity.errors import ValidationError

INTERNAL_IP = "InternalIP"
EXTERNAL_IP = "ExternalIP"

# Set by the kubelet from --node-ip when an external cloud provider is used.
PROVIDED_NODE_IP_ANNOTATION = "alpha.kubernetes.io/provided-node-ip"


@dataclass(frozen=True)
class NodeAddress:
    type: str
    address: str

    def to_dict(self) -> dict:
        return {"type": self.type, "address": self.address}

    @classmethod
    def from_dict(cls, payload: object) -> NodeAddress:
        if not isinstance(payload, dict):
            raise ValidationError("node address must be an object")
        addr_type = payload.get("type")
        address = payload.get("address")
        if not isinstance(addr_type, str) or not isinstance(address, str):
            raise ValidationError("node address requires string type and address")
        return cls(type=addr_type, address=address)


@dataclass
class Node:
    name: str
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    addresses: list[NodeAddress] = field(default_factory=list)
    resource_version: str = ""

    @classmethod
    def from_dict(cls, payload: object) -> Node:
        """Build a Node from Kubernetes ``v1.Node`` JSON."""
        if not isinstance(payload, dict):
            raise ValidationError("node payload must be an object")
        metadata = payload.get("metadata")
        if not isinstance(metadata, dict):
            raise ValidationError("node payload has no metadata")
        name = metadata.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("node payload has no metadata.name")

        status = payload.get("status")
        raw_addresses = status.get("addresses") if isinstance(status, dict) else None
        addresses = [
            NodeAddress.from_dict(item) for item in raw_addresses or [] if isinstance(item, dict)
        ]
        return cls(
            name=name,
            labels=_string_map(metadata.get("labels")),
            annotations=_string_map(metadata.get("annotations")),
            addresses=addresses,
            resource_version=str(metadata.get("resourceVersion") or ""),
        )

    def to_dict(self) -> dict:
        metadata: dict[str, object] = {"name": self.name}
        if self.labels:
            metadata["labels"] = dict(self.labels)
        if self.annotations:
            metadata["annotations"] = dict(self.annotations)
        if self.resource_version:
            metadata["resourceVersion"] = self.resource_version
        payload: dict[str, object] = {"apiVersion": "v1", "kind": "Node", "metadata": metadata}
        if self.addresses:
            payload["status"] = {"addresses": [addr.to_dict() for addr in self.addresses]}
        return payload

    def addresses_of(self, *types: str) -> list[str]:
        return [addr.address for addr in self.addresses if addr.type in types]


def _string_map(value: object) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v) for k, v in value.items() if v is not None}
