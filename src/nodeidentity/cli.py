from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from nodeidentity import __version__
from nodeidentity.audit.decision_trace import DecisionTrace
from nodeidentity.config import load_cloud_config
from nodeidentity.csr.approval import approval_condition, review_csr
from nodeidentity.csr.validator import TrustDecision
from nodeidentity.errors import NodeIdentityError, ValidationError
from nodeidentity.identity.labels import sync_identity_with_retry
from nodeidentity.identity.metadata import node_identity_from_metadata
from nodeidentity.net.addresses import ObservedAddress, classify
from nodeidentity.registry.base import DEFAULT_TIMEOUT_S, RequestContext
from nodeidentity.registry.kubectl import KubectlNodeRegistry
from nodeidentity.telemetry.logging import configure_logging

EXIT_OK = 0
EXIT_DENIED = 1
EXIT_ERROR = 2


def _read_json(path: str) -> object:
    try:
        text = sys.stdin.read() if path == "-" else Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ValidationError(f"failed to read {path}: {exc}") from exc
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"{path} is not valid JSON: {exc}") from exc


def _config_path(args: argparse.Namespace) -> Path | None:
    return Path(args.config) if getattr(args, "config", None) else None


def _print_json(payload: object) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True))


def cmd_classify(args: argparse.Namespace) -> int:
    payload = _read_json(args.addresses)
    if not isinstance(payload, list):
        raise ValidationError("addresses JSON must be a list")
    observed = [ObservedAddress.from_dict(item) for item in payload]
    config = load_cloud_config(_config_path(args))
    prefer_ipv6 = args.prefer_ipv6 or config.global_config.prefer_ipv6
    addresses = classify(args.platform, args.provided_ip or "", observed, prefer_ipv6=prefer_ipv6)
    _print_json([addr.to_dict() for addr in addresses])
    return EXIT_OK


def cmd_sync_labels(args: argparse.Namespace) -> int:
    config = load_cloud_config(_config_path(args))
    identity = node_identity_from_metadata(_read_json(args.metadata), config.global_config.cluster_name)
    registry = KubectlNodeRegistry(kubectl=config.kubectl, context=args.context, timeout_s=args.timeout)
    patched = sync_identity_with_retry(
        registry,
        args.node,
        identity,
        attempts=config.sync.attempts,
        backoff_s=config.sync.backoff_s,
    )
    print("patched" if patched else "unchanged")
    return EXIT_OK


def cmd_csr_check(args: argparse.Namespace) -> int:
    config = load_cloud_config(_config_path(args))
    if not config.features.approve_node_csr:
        print("ERROR: node CSR approval is disabled (features.approveNodeCSR)", file=sys.stderr)
        return EXIT_ERROR

    csr_object = _read_json(args.csr)
    registry = KubectlNodeRegistry(kubectl=config.kubectl, context=args.context, timeout_s=args.timeout)
    trace = DecisionTrace(Path(args.trace)) if args.trace else None
    result = review_csr(RequestContext.with_timeout(args.timeout), registry, csr_object, trace=trace)
    if result is None:
        print("ERROR: not a kubelet serving certificate request", file=sys.stderr)
        return EXIT_ERROR

    _print_json({**result.to_dict(), "condition": approval_condition(result)})
    if result.decision is TrustDecision.APPROVE:
        return EXIT_OK
    if result.decision is TrustDecision.DENY:
        return EXIT_DENIED
    return EXIT_ERROR


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="nodeidentity")
    parser.add_argument("--version", action="version", version=f"nodeidentity {__version__}")
    parser.add_argument("--log-level", default="info", help="Log level (debug, info, warning, error)")
    parser.add_argument("--log-format", choices=["console", "json"], default="console")
    sub = parser.add_subparsers(dest="command", required=True)

    p_classify = sub.add_parser("classify", help="Classify observed node addresses")
    p_classify.add_argument("--platform", required=True, help="Platform identifier (metal, nocloud, gcp, ...)")
    p_classify.add_argument("--provided-ip", default="", help="Node IP provided by the kubelet")
    p_classify.add_argument(
        "--addresses",
        required=True,
        help='Path to JSON list of {"address": "IP/prefix", "linkName": ...}, or - for stdin',
    )
    p_classify.add_argument("--prefer-ipv6", action="store_true", help="Order IPv6 external address first")
    p_classify.add_argument("--config", help="Path to cloud config YAML")
    p_classify.set_defaults(func=cmd_classify)

    p_sync = sub.add_parser("sync-labels", help="Sync cluster identity labels onto a node")
    p_sync.add_argument("--node", required=True, help="Node name")
    p_sync.add_argument("--metadata", required=True, help="Path to platform metadata JSON, or - for stdin")
    p_sync.add_argument("--config", help="Path to cloud config YAML")
    p_sync.add_argument("--context", help="kubectl context")
    p_sync.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT_S, help="kubectl timeout in seconds")
    p_sync.set_defaults(func=cmd_sync_labels)

    p_csr = sub.add_parser("csr-check", help="Review a kubelet serving CertificateSigningRequest")
    p_csr.add_argument("--csr", required=True, help="Path to CertificateSigningRequest JSON, or - for stdin")
    p_csr.add_argument("--config", help="Path to cloud config YAML")
    p_csr.add_argument("--context", help="kubectl context")
    p_csr.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT_S, help="Node lookup timeout in seconds")
    p_csr.add_argument("--trace", help="Append the decision to this JSONL file")
    p_csr.set_defaults(func=cmd_csr_check)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level, args.log_format)
    try:
        return args.func(args)
    except NodeIdentityError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
