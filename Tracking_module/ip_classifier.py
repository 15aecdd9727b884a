"""
Classify the IP address behind a pixel/download hit.

The decision is table driven: every rule is a (network, kind, provider) row and
rules are evaluated by kind priority, then table order, first match wins:

    LOCAL -> KNOWN_PROXY -> CRAWLER -> SECURITY_SCANNER -> UNCLASSIFIED

CRAWLER rows exist so that a provider's crawler range is never mistaken for the
same provider's image proxy; they classify as UNCLASSIFIED (live lookup, bot
flag comes from the user agent) but keep their provider label.

Known limitation: the scanner blocks are whole cloud-provider /8s and also match
real readers on VPNs or cloud desktops hosted there.
"""
import enum
import ipaddress
import json
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Union

from .Tracking_schema import DeviceInfo, LocationInfo, UNKNOWN

logger = logging.getLogger(__name__)

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class IpKind(str, enum.Enum):
    LOCAL = "local"
    KNOWN_PROXY = "known_proxy"
    CRAWLER = "crawler"
    SECURITY_SCANNER = "security_scanner"
    UNCLASSIFIED = "unclassified"


# Evaluation order; CRAWLER rules resolve to UNCLASSIFIED
KIND_PRIORITY = (IpKind.LOCAL, IpKind.KNOWN_PROXY, IpKind.CRAWLER, IpKind.SECURITY_SCANNER)

GOOGLE = "Google"
MICROSOFT = "Microsoft"
YAHOO = "Yahoo"
GOOGLEBOT = "Googlebot"


@dataclass(frozen=True)
class IpRule:
    network: IPNetwork
    kind: IpKind
    provider: Optional[str] = None

    @classmethod
    def parse(cls, network: str, kind: str, provider: Optional[str] = None) -> "IpRule":
        return cls(ipaddress.ip_network(network, strict=False), IpKind(kind), provider)


@dataclass(frozen=True)
class IpClassification:
    kind: IpKind
    provider: Optional[str] = None

    @property
    def needs_lookup(self) -> bool:
        return self.kind == IpKind.UNCLASSIFIED


def _rules(kind: IpKind, provider: Optional[str], networks: Iterable[str]) -> List[IpRule]:
    return [IpRule(ipaddress.ip_network(n), kind, provider) for n in networks]


DEFAULT_IP_RULES: List[IpRule] = [
    *_rules(IpKind.LOCAL, None, (
        "127.0.0.0/8", "10.0.0.0/8", "172.16.0.0/12", "192.168.0.0/16", "::1/128",
    )),
    # Image/link proxies run by the big mailbox providers
    *_rules(IpKind.KNOWN_PROXY, GOOGLE, ("66.102.0.0/20", "74.125.0.0/16", "209.85.128.0/17")),
    *_rules(IpKind.KNOWN_PROXY, MICROSOFT, ("40.92.0.0/15", "40.107.0.0/16", "52.100.0.0/14", "104.47.0.0/17")),
    *_rules(IpKind.KNOWN_PROXY, YAHOO, ("98.136.0.0/14", "66.196.64.0/18", "74.6.0.0/16")),
    # Google's web crawler, not the Gmail image proxy
    *_rules(IpKind.CRAWLER, GOOGLEBOT, ("66.249.64.0/19",)),
    # AWS / GCP / Fastly blocks used by link-scanning security gateways
    *_rules(IpKind.SECURITY_SCANNER, None, (
        "3.0.0.0/8", "13.0.0.0/8", "18.0.0.0/8", "34.0.0.0/8", "35.0.0.0/8",
        "44.0.0.0/8", "52.0.0.0/8", "54.0.0.0/8", "146.75.0.0/16", "151.101.0.0/16",
    )),
]


def load_ip_rules(path: Optional[str], base: Sequence[IpRule] = DEFAULT_IP_RULES) -> List[IpRule]:
    """
    Built-in rules plus the rows of a JSON file:
    [{"network": "203.0.113.0/24", "kind": "known_proxy", "provider": "Example"}]
    """
    rules = list(base)
    if not path:
        return rules
    with open(path, "r", encoding="utf-8") as f:
        rows = json.load(f)
    for row in rows:
        rules.append(IpRule.parse(row["network"], row["kind"], row.get("provider")))
    logger.info(f"Loaded {len(rows)} extra IP rules from {path}")
    return rules


def _parse_ip(ip: str):
    try:
        addr = ipaddress.ip_address(ip.strip())
    except ValueError:
        return None
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


def classify_ip(ip: Optional[str], rules: Optional[Sequence[IpRule]] = None) -> IpClassification:
    """Pure function of the IP string and the rule table."""
    if not ip or ip.strip().lower() == UNKNOWN.lower():
        return IpClassification(IpKind.LOCAL)

    addr = _parse_ip(ip)
    if addr is None:
        return IpClassification(IpKind.UNCLASSIFIED)

    table = DEFAULT_IP_RULES if rules is None else rules
    for kind in KIND_PRIORITY:
        for rule in table:
            if rule.kind != kind or rule.network.version != addr.version:
                continue
            if addr in rule.network:
                if kind == IpKind.CRAWLER:
                    return IpClassification(IpKind.UNCLASSIFIED, rule.provider)
                return IpClassification(kind, rule.provider)

    return IpClassification(IpKind.UNCLASSIFIED)


# ---------------------------------------------------------------------------
# Sentinels
# ---------------------------------------------------------------------------

LOCAL_NETWORK_LOCATION = LocationInfo(
    city="Local Network", region="Local", country="Local", isp="Private Network",
)

SECURITY_SCANNER_LOCATION = LocationInfo(
    city="Security Scanner", country="Cloud Server", isp="Email Security",
    is_proxy=True, is_hosting=True,
)

PROXY_LOCATIONS = {
    GOOGLE: LocationInfo(
        city="Gmail Proxy", country="Google Servers", isp="Google LLC",
        is_proxy=True, is_hosting=True,
    ),
    MICROSOFT: LocationInfo(
        city="Outlook Proxy", country="Microsoft Servers", isp="Microsoft Corporation",
        is_proxy=True, is_hosting=True,
    ),
    YAHOO: LocationInfo(
        city="Yahoo Proxy", country="Yahoo Servers", isp="Yahoo Inc.",
        is_proxy=True, is_hosting=True,
    ),
}

PROXY_NAMES = {
    GOOGLE: "Gmail Image Proxy",
    MICROSOFT: "Outlook",
    YAHOO: "Yahoo Mail Proxy",
}


def proxy_device(proxy_name: str) -> DeviceInfo:
    return DeviceInfo(
        browser=proxy_name,
        device_type="Email Proxy",
        is_proxy=True,
        proxy_name=proxy_name,
    )


def sentinel_location(classification: IpClassification) -> Optional[LocationInfo]:
    """Fixed location for classified IPs, None when a live lookup is needed."""
    if classification.kind == IpKind.LOCAL:
        return LOCAL_NETWORK_LOCATION
    if classification.kind == IpKind.SECURITY_SCANNER:
        return SECURITY_SCANNER_LOCATION
    if classification.kind == IpKind.KNOWN_PROXY:
        return PROXY_LOCATIONS.get(
            classification.provider,
            LocationInfo(
                city=f"{classification.provider or 'Email'} Proxy",
                country=f"{classification.provider or 'Unknown'} Servers",
                isp=classification.provider or UNKNOWN,
                is_proxy=True,
                is_hosting=True,
            ),
        )
    return None


def sentinel_device(classification: IpClassification) -> Optional[DeviceInfo]:
    """Fixed device for known proxies; other kinds keep the parsed user agent."""
    if classification.kind != IpKind.KNOWN_PROXY:
        return None
    name = PROXY_NAMES.get(classification.provider, f"{classification.provider or 'Email'} Proxy")
    return proxy_device(name)
