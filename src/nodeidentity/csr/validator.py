"""Cross-check of certificate request IP claims against recorded node addresses."""

from __future__ import annotations

import enum
from dataclasses import dataclass

import structlog

from nodeidentity.csr.request import CertificateRequest
from nodeidentity.errors import (
    NodeIdentityError,
    NotFoundError,
    TransientError,
    TrustDenied,
    ValidationError,
)
from nodeidentity.models import EXTERNAL_IP, INTERNAL_IP, PROVIDED_NODE_IP_ANNOTATION, Node
from nodeidentity.net.addresses import IPAddress, canonical_ip, parse_ip
from nodeidentity.registry.base import NodeRegistry, RequestContext

logger = structlog.get_logger()


class TrustDecision(enum.Enum):
    APPROVE = "approve"
    DENY = "deny"
    ERROR = "error"


@dataclass(frozen=True)
class TrustResult:
    decision: TrustDecision
    node_name: str = ""
    reason: str = ""
    cause: Exception | None = None

    @property
    def approved(self) -> bool:
        return self.decision is TrustDecision.APPROVE

    def to_dict(self) -> dict:
        return {
            "decision": self.decision.value,
            "node": self.node_name,
            "reason": self.reason,
            "error": str(self.cause) if self.cause is not None else None,
        }


def node_name_for(request: CertificateRequest) -> str:
    for name in request.dns_names:
        if name.strip():
            return name.strip()
    raise ValidationError("certificate request has no DNS names")


def lookup_node(ctx: RequestContext, registry: NodeRegistry, name: str) -> Node:
    """Fetch ``name`` under ``ctx``. Failures keep their type and gain the node name."""
    try:
        ctx.check()
        node = registry.get(name, timeout_s=ctx.remaining())
        ctx.check()
    except NotFoundError as exc:
        raise NotFoundError(f"failed to get node {name}: {exc}") from exc
    except TransientError as exc:
        raise TransientError(f"failed to get node {name}: {exc}") from exc
    return node


def recorded_addresses(node: Node) -> set[IPAddress]:
    """Canonical InternalIP/ExternalIP addresses of ``node`` plus its provided node IPs."""
    values = node.addresses_of(INTERNAL_IP, EXTERNAL_IP)
    values.extend(node.annotations.get(PROVIDED_NODE_IP_ANNOTATION, "").split(","))

    recorded: set[IPAddress] = set()
    for value in values:
        if not value.strip():
            continue
        try:
            recorded.add(parse_ip(value))
        except ValidationError:
            logger.debug("node_address_unparsable", node=node.name, address=value)
    return recorded


def unmatched_ips(request: CertificateRequest, recorded: set[IPAddress]) -> list[IPAddress]:
    return [ip for ip in request.ip_addresses if canonical_ip(ip) not in recorded]


def _check(ctx: RequestContext, registry: NodeRegistry, request: CertificateRequest) -> tuple[str, list[IPAddress]]:
    name = node_name_for(request)
    node = lookup_node(ctx, registry, name)
    if not request.ip_addresses:
        return name, []
    return name, unmatched_ips(request, recorded_addresses(node))


def evaluate(ctx: RequestContext, registry: NodeRegistry, request: CertificateRequest) -> bool:
    """Approve ``request`` only if every IP SAN is an address recorded on its node.

    A missing node raises NotFoundError and a cancelled or timed out lookup
    raises TransientError; neither is reported as a denial.
    """
    _, unmatched = _check(ctx, registry, request)
    return not unmatched


def decide(ctx: RequestContext, registry: NodeRegistry, request: CertificateRequest) -> TrustResult:
    name = request.dns_names[0] if request.dns_names else ""
    try:
        name, unmatched = _check(ctx, registry, request)
    except NodeIdentityError as exc:
        return TrustResult(TrustDecision.ERROR, node_name=name, reason=str(exc), cause=exc)
    if unmatched:
        reason = "IP addresses not assigned to node: " + ", ".join(str(ip) for ip in unmatched)
        return TrustResult(TrustDecision.DENY, node_name=name, reason=reason)
    return TrustResult(TrustDecision.APPROVE, node_name=name)


def require_approval(ctx: RequestContext, registry: NodeRegistry, request: CertificateRequest) -> str:
    """Like evaluate, but raise TrustDenied on a negative decision. Returns the node name."""
    name, unmatched = _check(ctx, registry, request)
    if unmatched:
        raise TrustDenied(name, "IP addresses not assigned to node: " + ", ".join(str(ip) for ip in unmatched))
    return name
