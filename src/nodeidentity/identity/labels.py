"""Cluster identity labels owned by the cloud provider on Node objects."""

from __future__ import annotations

import time
from typing import Callable

import structlog

from nodeidentity.errors import RETRYABLE_ERRORS, ValidationError
from nodeidentity.identity.metadata import NodeIdentity
from nodeidentity.models import Node
from nodeidentity.registry.base import NodeRegistry

CLUSTER_NAME_LABEL = "node.cloudprovider.kubernetes.io/clustername"
PLATFORM_LABEL = "node.cloudprovider.kubernetes.io/platform"
LIFECYCLE_LABEL = "node.cloudprovider.kubernetes.io/lifecycle"
SPOT_LIFECYCLE = "spot"

MANAGED_LABELS = (CLUSTER_NAME_LABEL, PLATFORM_LABEL, LIFECYCLE_LABEL)

DEFAULT_SYNC_ATTEMPTS = 5
DEFAULT_SYNC_BACKOFF_S = 0.2

logger = structlog.get_logger()


def desired_labels(identity: NodeIdentity) -> dict[str, str | None]:
    """Managed label values for ``identity``; None means the label must be absent."""
    return {
        CLUSTER_NAME_LABEL: identity.cluster_name or None,
        PLATFORM_LABEL: identity.platform or None,
        LIFECYCLE_LABEL: SPOT_LIFECYCLE if identity.spot else None,
    }


def label_patch(node: Node, identity: NodeIdentity) -> dict | None:
    """JSON merge patch moving the managed labels of ``node`` to ``identity``.

    Returns None when the node already carries the desired labels. The patch
    pins the node's resourceVersion so a concurrent writer causes a conflict
    instead of a lost update.
    """
    changes: dict[str, str | None] = {}
    for key, value in desired_labels(identity).items():
        if value is None:
            if key in node.labels:
                changes[key] = None
        elif node.labels.get(key) != value:
            changes[key] = value
    if not changes:
        return None

    metadata: dict[str, object] = {"labels": changes}
    if node.resource_version:
        metadata["resourceVersion"] = node.resource_version
    return {"metadata": metadata}


def sync_identity(registry: NodeRegistry, node: Node, identity: NodeIdentity) -> bool:
    """Patch the managed labels of ``node``. Returns True when a patch was sent.

    NotFoundError and ConflictError from the registry propagate to the caller.
    """
    patch = label_patch(node, identity)
    if patch is None:
        return False
    registry.patch(node.name, patch)
    logger.info("node_labels_synced", node=node.name, labels=patch["metadata"]["labels"])
    return True


def sync_identity_with_retry(
    registry: NodeRegistry,
    name: str,
    identity: NodeIdentity,
    attempts: int = DEFAULT_SYNC_ATTEMPTS,
    backoff_s: float = DEFAULT_SYNC_BACKOFF_S,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """Read the node and sync its labels, retrying conflicts and transient
    registry failures with exponential backoff.

    The last error is re-raised once ``attempts`` is exhausted.
    """
    if attempts < 1:
        raise ValidationError("sync attempts must be >= 1")

    delay = backoff_s
    for attempt in range(1, attempts + 1):
        try:
            node = registry.get(name)
            return sync_identity(registry, node, identity)
        except RETRYABLE_ERRORS as exc:
            if attempt == attempts:
                logger.warning(
                    "identity_sync_failed",
                    node=name,
                    attempts=attempts,
                    error=str(exc),
                )
                raise
            logger.info(
                "identity_sync_retry",
                node=name,
                attempt=attempt,
                backoff_s=delay,
                error=str(exc),
            )
            sleep(delay)
            delay *= 2
    raise AssertionError("unreachable")
