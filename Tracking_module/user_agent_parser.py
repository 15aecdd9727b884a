"""
User agent parsing by ordered pattern matching. Pure: no I/O, no shared state.
"""
import re
from typing import Optional, Tuple

from .Tracking_schema import DeviceInfo, UNKNOWN

# Checked in this order, a match skips all further parsing
PROXY_SIGNATURES = (
    ("GoogleImageProxy", "Gmail Image Proxy"),
    ("YahooMailProxy", "Yahoo Mail Proxy"),
    ("Outlook", "Outlook"),
)

BOT_TOKENS = (
    "googlebot", "bingbot", "slurp", "duckduckbot", "baiduspider", "yandexbot",
    "ahrefsbot", "semrushbot", "mj12bot", "dotbot", "petalbot", "applebot",
    "gptbot", "ia_archiver", "archive.org_bot", "facebookexternalhit",
    "twitterbot", "linkedinbot", "crawler", "spider", "python-requests",
    "curl/", "wget/", "headlesschrome",
)

# Order matters: Edge and Opera carry a Chrome token, Chrome carries a Safari token
BROWSER_PATTERNS = (
    ("Edge", re.compile(r"Edg(?:e|A|iOS)?/([\d.]+)")),
    ("Opera", re.compile(r"(?:OPR|Opera)/([\d.]+)")),
    ("Chrome", re.compile(r"(?:Chrome|CriOS)/([\d.]+)")),
    ("Safari", re.compile(r"Version/([\d.]+).*Safari/")),
    ("Firefox", re.compile(r"(?:Firefox|FxiOS)/([\d.]+)")),
    ("Internet Explorer", re.compile(r"(?:MSIE |Trident/.*rv:)([\d.]+)")),
)

WINDOWS_VERSIONS = {
    "10.0": "10",
    "6.3": "8.1",
    "6.2": "8",
    "6.1": "7",
    "6.0": "Vista",
    "5.2": "XP",
    "5.1": "XP",
}

OS_PATTERNS = (
    ("Windows", re.compile(r"Windows NT ([\d.]+)")),
    ("macOS", re.compile(r"Macintosh;.*?Mac OS X ([\d_.]+)?")),
    ("iOS", re.compile(r"(?:iPhone|iPad|iPod).*? OS ([\d_]+)")),
    ("Android", re.compile(r"Android ?([\d.]+)?")),
    ("Linux", re.compile(r"Linux")),
    ("Chrome OS", re.compile(r"CrOS")),
)

MOBILE_PATTERN = re.compile(r"Mobi|iPhone|iPod|Windows Phone")
TABLET_PATTERN = re.compile(r"iPad|Tablet")

UNKNOWN_DEVICE = DeviceInfo()


def _match_proxy(user_agent: str) -> Optional[DeviceInfo]:
    for token, name in PROXY_SIGNATURES:
        if token in user_agent:
            return DeviceInfo(
                browser=name,
                device_type="Email Proxy",
                is_proxy=True,
                proxy_name=name,
            )
    return None


def _is_bot(user_agent: str) -> bool:
    ua = user_agent.lower()
    return any(token in ua for token in BOT_TOKENS)


def _match_browser(user_agent: str) -> Tuple[str, str]:
    for name, pattern in BROWSER_PATTERNS:
        match = pattern.search(user_agent)
        if match:
            return name, match.group(1) or ""
    return UNKNOWN, ""


def _match_os(user_agent: str) -> Tuple[str, str]:
    for name, pattern in OS_PATTERNS:
        match = pattern.search(user_agent)
        if not match:
            continue
        version = match.group(1) if match.groups() else None
        if name == "Windows":
            # Windows 11 still reports NT 10.0
            return name, WINDOWS_VERSIONS.get(version, version or "")
        return name, (version or "").replace("_", ".")
    return UNKNOWN, ""


def _device_type(user_agent: str) -> str:
    if MOBILE_PATTERN.search(user_agent):
        return "Mobile"
    if TABLET_PATTERN.search(user_agent):
        return "Tablet"
    return "Desktop"


def parse_user_agent(user_agent: Optional[str]) -> DeviceInfo:
    """
    Parse a raw User-Agent header. Total: never raises, an absent header gives
    the Unknown device.
    """
    if not user_agent or not user_agent.strip():
        return UNKNOWN_DEVICE

    proxy = _match_proxy(user_agent)
    if proxy is not None:
        return proxy

    is_bot = _is_bot(user_agent)
    browser, browser_version = _match_browser(user_agent)
    os_name, os_version = _match_os(user_agent)

    return DeviceInfo(
        browser=browser,
        browser_version=browser_version,
        os=os_name,
        os_version=os_version,
        device_type="Bot" if is_bot else _device_type(user_agent),
        is_bot=is_bot,
    )
