from __future__ import annotations

from dataclasses import dataclass

from nodeidentity.errors import ValidationError


@dataclass(frozen=True)
class NodeIdentity:
    cluster_name: str
    platform: str = ""
    hostname: str = ""
    spot: bool = False


def node_identity_from_metadata(metadata: object, cluster_name: str) -> NodeIdentity:
    """Derive a NodeIdentity from a platform metadata record.

    Accepts the fields published by the platform metadata backend
    (``platform``, ``hostname``, ``spot``); missing fields default to empty.
    """
    if metadata is None:
        metadata = {}
    if not isinstance(metadata, dict):
        raise ValidationError("platform metadata must be an object")

    fields: dict[str, str] = {}
    for key in ("platform", "hostname"):
        value = metadata.get(key)
        if value is None:
            value = ""
        if not isinstance(value, str):
            raise ValidationError(f"platform metadata '{key}' must be a string")
        fields[key] = value.strip()

    spot = metadata.get("spot", False)
    if spot is None:
        spot = False
    if not isinstance(spot, bool):
        raise ValidationError("platform metadata 'spot' must be a boolean")

    return NodeIdentity(
        cluster_name=cluster_name.strip() if isinstance(cluster_name, str) else "",
        platform=fields["platform"],
        hostname=fields["hostname"],
        spot=spot,
    )
