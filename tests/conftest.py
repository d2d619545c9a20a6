# --- test import path bootstrap (src/ layout) ---
import sys as _sys
from pathlib import Path as _Path

_SRC = _Path(__file__).resolve().parents[1] / "src"
if _SRC.is_dir():
    _p = str(_SRC)
    if _p not in _sys.path:
        _sys.path.insert(0, _p)
# --- end bootstrap ---

import base64
import ipaddress

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from nodeidentity.models import PROVIDED_NODE_IP_ANNOTATION, Node, NodeAddress
from nodeidentity.registry.memory import MemoryNodeRegistry


@pytest.fixture
def csr_nodes() -> list[Node]:
    return [
        Node(name="node1"),
        Node(name="node2", annotations={PROVIDED_NODE_IP_ANNOTATION: "1.2.3.4"}),
        Node(
            name="node-int",
            annotations={PROVIDED_NODE_IP_ANNOTATION: "1.2.3.4"},
            addresses=[NodeAddress("InternalIP", "1.2.3.4")],
        ),
        Node(
            name="node-int-ext",
            annotations={PROVIDED_NODE_IP_ANNOTATION: "1.2.3.4"},
            addresses=[
                NodeAddress("InternalIP", "1.2.3.4"),
                NodeAddress("ExternalIP", "2000::1"),
            ],
        ),
    ]


@pytest.fixture
def registry(csr_nodes: list[Node]) -> MemoryNodeRegistry:
    return MemoryNodeRegistry(csr_nodes)


def _build_csr_pem(
    *,
    common_name: str,
    organization: str | None = "system:nodes",
    dns_names: list[str] | None = None,
    ip_addresses: list[str] | None = None,
    emails: list[str] | None = None,
) -> bytes:
    key = ec.generate_private_key(ec.SECP256R1())
    attrs = [x509.NameAttribute(NameOID.COMMON_NAME, common_name)]
    if organization:
        attrs.insert(0, x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization))
    builder = x509.CertificateSigningRequestBuilder().subject_name(x509.Name(attrs))

    general_names: list[x509.GeneralName] = [x509.DNSName(name) for name in dns_names or []]
    general_names.extend(x509.IPAddress(ipaddress.ip_address(ip)) for ip in ip_addresses or [])
    general_names.extend(x509.RFC822Name(email) for email in emails or [])
    if general_names:
        builder = builder.add_extension(x509.SubjectAlternativeName(general_names), critical=False)

    csr = builder.sign(key, hashes.SHA256())
    return csr.public_bytes(serialization.Encoding.PEM)


@pytest.fixture
def make_csr_pem():
    return _build_csr_pem


@pytest.fixture
def make_csr_object():
    def _make(
        node: str,
        *,
        dns_names: list[str] | None = None,
        ip_addresses: list[str] | None = None,
        username: str | None = None,
        groups: list[str] | None = None,
        usages: list[str] | None = None,
        signer: str = "kubernetes.io/kubelet-serving",
        common_name: str | None = None,
        organization: str | None = "system:nodes",
        emails: list[str] | None = None,
    ) -> dict:
        pem = _build_csr_pem(
            common_name=common_name or f"system:node:{node}",
            organization=organization,
            dns_names=[node] if dns_names is None else dns_names,
            ip_addresses=ip_addresses,
            emails=emails,
        )
        return {
            "apiVersion": "certificates.k8s.io/v1",
            "kind": "CertificateSigningRequest",
            "metadata": {"name": f"csr-{node}"},
            "spec": {
                "request": base64.b64encode(pem).decode("ascii"),
                "signerName": signer,
                "username": username or f"system:node:{node}",
                "groups": ["system:nodes", "system:authenticated"] if groups is None else groups,
                "usages": ["digital signature", "server auth"] if usages is None else usages,
            },
        }

    return _make
