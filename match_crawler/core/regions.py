"""
Routing tables for Riot regions and platforms.
"""

from typing import Dict, List, Optional

# Regional routing value -> platform prefixes that appear in match ids
DEFAULT_REGION_PREFIXES: Dict[str, List[str]] = {
    "americas": ["NA1", "BR1", "LA1", "LA2"],
    "europe": ["EUW1", "EUN1", "TR1", "RU"],
    "asia": ["KR", "JP1"],
    "sea": ["OC1", "SG2", "TW2", "VN2", "PH2", "TH2"],
}

PLATFORM_TO_REGION: Dict[str, str] = {
    prefix.lower(): region for region, prefixes in DEFAULT_REGION_PREFIXES.items() for prefix in prefixes
}

# account-v1 is not served from the sea cluster
ACCOUNT_ROUTING: Dict[str, str] = {
    "americas": "americas",
    "europe": "europe",
    "asia": "asia",
    "sea": "asia",
}


def region_for_platform(platform: str) -> Optional[str]:
    return PLATFORM_TO_REGION.get(platform.lower())


def account_routing_for_platform(platform: str) -> str:
    """Routing cluster that serves account lookups for a platform."""
    region = region_for_platform(platform)
    if region is None:
        raise ValueError(f"Unknown platform: {platform}")
    return ACCOUNT_ROUTING[region]


def platform_prefix(match_id: str) -> str:
    """Platform prefix embedded in a match id (``EUW1_123`` -> ``EUW1``)."""
    prefix, _, _ = match_id.partition("_")
    return prefix.upper()
