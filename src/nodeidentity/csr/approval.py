"""Review of kubelet serving CertificateSigningRequest objects."""

from __future__ import annotations

import structlog

from nodeidentity.audit.decision_trace import DecisionTrace
from nodeidentity.csr.request import check_kubelet_serving_csr, is_kubelet_serving
from nodeidentity.csr.validator import TrustDecision, TrustResult, decide
from nodeidentity.errors import TrustDenied, ValidationError
from nodeidentity.registry.base import NodeRegistry, RequestContext

APPROVED_REASON = "NodeIdentityVerified"
DENIED_REASON = "NodeIdentityMismatch"

logger = structlog.get_logger()


def _csr_name(csr_object: object) -> str:
    if isinstance(csr_object, dict):
        metadata = csr_object.get("metadata")
        if isinstance(metadata, dict) and isinstance(metadata.get("name"), str):
            return metadata["name"]
    return ""


def review_csr(
    ctx: RequestContext,
    registry: NodeRegistry,
    csr_object: object,
    trace: DecisionTrace | None = None,
) -> TrustResult | None:
    """Decide on a kubelet serving CSR object.

    Returns None for requests addressed to other signers; those are left to
    their own approvers.
    """
    if not is_kubelet_serving(csr_object):
        return None

    csr_name = _csr_name(csr_object)
    try:
        node_name, request = check_kubelet_serving_csr(csr_object)
    except TrustDenied as exc:
        result = TrustResult(TrustDecision.DENY, node_name=exc.node_name, reason=exc.reason)
    except ValidationError as exc:
        result = TrustResult(TrustDecision.ERROR, reason=str(exc), cause=exc)
    else:
        result = decide(ctx, registry, request)
        if not result.node_name:
            result = TrustResult(result.decision, node_name, result.reason, result.cause)

    log = logger.bind(csr=csr_name, node=result.node_name)
    if result.decision is TrustDecision.APPROVE:
        log.info("csr_approved")
    elif result.decision is TrustDecision.DENY:
        log.warning("csr_denied", reason=result.reason)
    else:
        log.error("csr_review_failed", error=result.reason)

    if trace is not None:
        trace.emit("csr_reviewed", {"csr": csr_name, **result.to_dict()})
    return result


def approval_condition(result: TrustResult) -> dict | None:
    """Status condition to append to the CSR; None leaves the request pending."""
    if result.decision is TrustDecision.APPROVE:
        return {
            "type": "Approved",
            "status": "True",
            "reason": APPROVED_REASON,
            "message": f"node {result.node_name} serving certificate approved",
        }
    if result.decision is TrustDecision.DENY:
        return {
            "type": "Denied",
            "status": "True",
            "reason": DENIED_REASON,
            "message": result.reason,
        }
    return None
