"""Hardcoded default configuration values."""

from __future__ import annotations

from typing import Any

# Ordered: first matching rule wins.  Keep newer, more specific CDN
# aliases above broader ones.
DEFAULT_REFERER_RULES: list[dict[str, Any]] = [
    {
        # MegaCloud family.  CDN hostnames rotate often (e.g.
        # thunderstrike77.online, sunburst93.live, clearskyline88.online).
        "referer": "https://megacloud.blog/",
        "patterns": [
            "megacloud",
            "haildrop",
            "rapid-cloud",
            "megaup",
            "lightningspark",
            "sunshinerays",
            "surfparadise",
            "moonjump",
            "skydrop",
            "wetransfer",
            "bicdn",
            "bcdn",
            "b-cdn",
            "bunny",
            "mcloud",
            "fogtwist",
            "statics",
            "mgstatics",
            "lasercloud",
            "cloudrax",
            "stormshade",
            "thunderwave",
            "raincloud",
            "snowfall",
            "rainveil",
            "thunderstrike",
            "sunburst",
            "clearskyline",
        ],
    },
    {"referer": "https://vidcloud.blog/", "patterns": ["vidcloud", "vidstreaming"]},
    {"referer": "https://hianime.to/", "patterns": ["hianime", "aniwatch"]},
    {"referer": "https://gogoanime.cl/", "patterns": ["gogoanime", "gogocdn"]},
    {"referer": "https://animepahe.ru/", "patterns": ["kwik", "animepahe"]},
]

# The target's own origin is always appended as the last candidate.
DEFAULT_REFERER_CANDIDATES: list[str] = [
    "https://megacloud.blog/",
    "https://megacloud.tv/",
    "https://hianime.to/",
    "https://aniwatch.to/",
]

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)

DEFAULT_CONFIG: dict[str, Any] = {
    "app_name": "hlsrelay",
    "environment": "dev",
    "http": {
        "timeout_seconds": 25.0,
        "follow_redirects": True,
        "user_agent": DEFAULT_USER_AGENT,
    },
    "logging": {
        "level": "INFO",
        "format": None,  # Derived from environment in schema.py
    },
    "relay": {
        "public_base_url": None,
        "absolute_playlist_urls": False,
        "default_referer": "https://megacloud.blog/",
        "referer_rules": DEFAULT_REFERER_RULES,
        "referer_candidates": DEFAULT_REFERER_CANDIDATES,
        "delegate_base_url": None,
        "delegate_timeout_seconds": 25.0,
        "segment_max_age_seconds": 3600,
        "preflight_max_age_seconds": 86400,
    },
}
