"""Kubelet serving certificate signing requests."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from typing import Iterable

from cryptography import x509
from cryptography.x509.oid import NameOID

from nodeidentity.errors import TrustDenied, ValidationError
from nodeidentity.net.addresses import IPAddress, canonical_ip, parse_ip

KUBELET_SERVING_SIGNER = "kubernetes.io/kubelet-serving"
NODE_USER_PREFIX = "system:node:"
NODES_GROUP = "system:nodes"

SERVER_AUTH_USAGE = "server auth"
ALLOWED_USAGES = frozenset({"digital signature", "key encipherment", SERVER_AUTH_USAGE})


@dataclass(frozen=True)
class CertificateRequest:
    dns_names: tuple[str, ...] = ()
    ip_addresses: tuple[IPAddress, ...] = ()
    common_name: str = ""
    organizations: tuple[str, ...] = ()
    email_addresses: tuple[str, ...] = ()
    uris: tuple[str, ...] = ()

    @classmethod
    def from_names(
        cls,
        dns_names: Iterable[str] = (),
        ip_addresses: Iterable[str | IPAddress] = (),
    ) -> CertificateRequest:
        ips = tuple(
            parse_ip(ip) if isinstance(ip, str) else canonical_ip(ip) for ip in ip_addresses
        )
        return cls(dns_names=tuple(dns_names), ip_addresses=ips)


def _attribute_values(name: x509.Name, oid: x509.ObjectIdentifier) -> list[str]:
    values = []
    for attr in name.get_attributes_for_oid(oid):
        value = attr.value
        values.append(value.decode("utf-8", "replace") if isinstance(value, bytes) else str(value))
    return values


def parse_csr_pem(data: bytes | str) -> CertificateRequest:
    """Parse a PEM encoded PKCS#10 request into its identity claims."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    try:
        csr = x509.load_pem_x509_csr(data)
    except ValueError as exc:
        raise ValidationError(f"failed to parse certificate request: {exc}") from exc
    if not csr.is_signature_valid:
        raise ValidationError("certificate request signature is invalid")

    try:
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        san = None

    common_names = _attribute_values(csr.subject, NameOID.COMMON_NAME)
    if san is None:
        return CertificateRequest(
            common_name=common_names[0] if common_names else "",
            organizations=tuple(_attribute_values(csr.subject, NameOID.ORGANIZATION_NAME)),
        )
    return CertificateRequest(
        dns_names=tuple(san.get_values_for_type(x509.DNSName)),
        ip_addresses=tuple(canonical_ip(ip) for ip in san.get_values_for_type(x509.IPAddress)),
        common_name=common_names[0] if common_names else "",
        organizations=tuple(_attribute_values(csr.subject, NameOID.ORGANIZATION_NAME)),
        email_addresses=tuple(san.get_values_for_type(x509.RFC822Name)),
        uris=tuple(san.get_values_for_type(x509.UniformResourceIdentifier)),
    )


def csr_spec(csr_object: object) -> dict:
    if not isinstance(csr_object, dict):
        raise ValidationError("CertificateSigningRequest must be an object")
    spec = csr_object.get("spec")
    if not isinstance(spec, dict):
        raise ValidationError("CertificateSigningRequest has no spec")
    return spec


def is_kubelet_serving(csr_object: object) -> bool:
    try:
        return csr_spec(csr_object).get("signerName") == KUBELET_SERVING_SIGNER
    except ValidationError:
        return False


def decode_request(spec: dict) -> CertificateRequest:
    encoded = spec.get("request")
    if not isinstance(encoded, str) or not encoded.strip():
        raise ValidationError("CertificateSigningRequest has no spec.request")
    try:
        pem = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError(f"spec.request is not valid base64: {exc}") from exc
    return parse_csr_pem(pem)


def _string_list(spec: dict, key: str) -> list[str]:
    value = spec.get(key)
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValidationError(f"spec.{key} must be a list of strings")
    return value


def check_kubelet_serving_csr(csr_object: object) -> tuple[str, CertificateRequest]:
    """Check that a CertificateSigningRequest is a well formed kubelet serving
    request from the node it names.

    Returns ``(node_name, request)``. Malformed objects raise ValidationError;
    requests whose claims do not belong to the requesting node raise
    TrustDenied.
    """
    spec = csr_spec(csr_object)
    if spec.get("signerName") != KUBELET_SERVING_SIGNER:
        raise ValidationError(f"unsupported signer {spec.get('signerName')!r}")

    username = spec.get("username")
    if not isinstance(username, str) or not username.startswith(NODE_USER_PREFIX):
        raise TrustDenied(str(username), "requestor is not a node")
    node_name = username[len(NODE_USER_PREFIX):]
    if not node_name:
        raise TrustDenied(username, "requestor is not a node")

    groups = _string_list(spec, "groups")
    if NODES_GROUP not in groups:
        raise TrustDenied(node_name, f"requestor is not in group {NODES_GROUP}")

    usages = _string_list(spec, "usages")
    if SERVER_AUTH_USAGE not in usages:
        raise TrustDenied(node_name, "server auth usage is required")
    extra = sorted(set(usages) - ALLOWED_USAGES)
    if extra:
        raise TrustDenied(node_name, f"usages not allowed: {', '.join(extra)}")

    request = decode_request(spec)
    if request.common_name != username:
        raise TrustDenied(node_name, f"subject common name must be {username}")
    if list(request.organizations) != [NODES_GROUP]:
        raise TrustDenied(node_name, f"subject organization must be {NODES_GROUP}")
    if request.email_addresses or request.uris:
        raise TrustDenied(node_name, "email and URI subject alternative names are not allowed")
    if not request.dns_names:
        raise TrustDenied(node_name, "no DNS subject alternative names")
    if request.dns_names[0] != node_name:
        raise TrustDenied(node_name, f"first DNS name {request.dns_names[0]} is not the node name")
    return node_name, request
