"""Classification of observed node addresses into InternalIP/ExternalIP."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Iterable, Union

from nodeidentity.errors import ValidationError
from nodeidentity.models import EXTERNAL_IP, INTERNAL_IP, NodeAddress

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPInterface = Union[ipaddress.IPv4Interface, ipaddress.IPv6Interface]

ClassifiedAddress = NodeAddress

# Platforms without a managed cloud network: the host sees its public
# addresses directly on its interfaces.
BARE_METAL_PLATFORMS = frozenset({"nocloud", "metal", "openstack", "oracle", "upcloud", "vultr"})

# Link the platform network controller uses for cloud-provided public IPs.
EXTERNAL_LINK = "external"

# RFC1918, shared address space (RFC 6598) and unique local addresses.
PRIVATE_NETWORKS = tuple(
    ipaddress.ip_network(net)
    for net in ("10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "100.64.0.0/10", "fc00::/7")
)

EXCLUDED_LINKS = frozenset({"kubespan", "siderolink", "lo"})
EXCLUDED_LINK_PREFIXES = ("dummy",)


@dataclass(frozen=True)
class ObservedAddress:
    address: str
    link_name: str = ""

    @classmethod
    def from_dict(cls, payload: object) -> ObservedAddress:
        if not isinstance(payload, dict):
            raise ValidationError("observed address must be an object")
        address = payload.get("address")
        if not isinstance(address, str) or not address.strip():
            raise ValidationError("observed address requires a non-empty 'address'")
        link_name = payload.get("linkName", payload.get("link_name", ""))
        if link_name is None:
            link_name = ""
        if not isinstance(link_name, str):
            raise ValidationError("observed address 'linkName' must be a string")
        return cls(address=address.strip(), link_name=link_name.strip())

    def interface(self) -> IPInterface:
        try:
            return ipaddress.ip_interface(self.address)
        except ValueError as exc:
            raise ValidationError(f"invalid observed address {self.address!r}: {exc}") from exc


@dataclass(frozen=True)
class PlatformPolicy:
    platform: str
    prefer_ipv6: bool = False
    provided_ip: str = ""


def canonical_ip(ip: IPAddress) -> IPAddress:
    if ip.version == 6 and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def parse_ip(value: str) -> IPAddress:
    text = value.strip() if isinstance(value, str) else ""
    try:
        return canonical_ip(ipaddress.ip_address(text))
    except ValueError as exc:
        raise ValidationError(f"invalid IP address {value!r}") from exc


def is_excluded_link(link_name: str) -> bool:
    return link_name in EXCLUDED_LINKS or link_name.startswith(EXCLUDED_LINK_PREFIXES)


def _is_external_candidate(
    platform: str,
    ip: IPAddress,
    link_name: str,
    provided: IPAddress | None,
) -> bool:
    if provided is not None and ip == provided:
        return False
    if ip.is_loopback or ip.is_link_local or ip.is_unspecified or ip.is_multicast:
        return False
    if is_excluded_link(link_name):
        return False
    if platform in BARE_METAL_PLATFORMS:
        return not is_private(ip)
    return link_name == EXTERNAL_LINK


def is_private(ip: IPAddress) -> bool:
    return any(ip.version == net.version and ip in net for net in PRIVATE_NETWORKS)


def classify(
    platform: str,
    provided_ip: str,
    observed: Iterable[ObservedAddress],
    prefer_ipv6: bool = False,
) -> list[NodeAddress]:
    """Return the node's addresses: the provided IP as InternalIP, then at most
    one ExternalIP per IP family ordered by family preference.

    Raises ValidationError when ``provided_ip`` or an observed address cannot
    be parsed.
    """
    addresses: list[NodeAddress] = []

    provided: IPAddress | None = None
    if provided_ip and provided_ip.strip():
        provided = parse_ip(provided_ip)
        addresses.append(NodeAddress(type=INTERNAL_IP, address=str(provided)))

    by_family: dict[int, list[IPInterface]] = {4: [], 6: []}
    for item in observed:
        iface = item.interface()
        ip = canonical_ip(iface.ip)
        if not _is_external_candidate(platform, ip, item.link_name, provided):
            continue
        by_family[ip.version].append(iface)

    selected: dict[int, IPAddress] = {}
    if by_family[4]:
        selected[4] = canonical_ip(by_family[4][0].ip)
    if by_family[6]:
        # Bare-metal platforms keep the last observed IPv6 address.
        index = -1 if platform in BARE_METAL_PLATFORMS else 0
        selected[6] = canonical_ip(by_family[6][index].ip)

    order = (6, 4) if prefer_ipv6 else (4, 6)
    for family in order:
        if family in selected:
            addresses.append(NodeAddress(type=EXTERNAL_IP, address=str(selected[family])))
    return addresses


def classify_policy(policy: PlatformPolicy, observed: Iterable[ObservedAddress]) -> list[NodeAddress]:
    return classify(policy.platform, policy.provided_ip, observed, prefer_ipv6=policy.prefer_ipv6)
