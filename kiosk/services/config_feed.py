"""Installation defaults from the shared masjid configuration document.

The document lists every installation:

    {"masjids": [{"slug": "central", "aliases": ["cm"], "name": "Central Masjid",
                  "tabs": ["zakat", "daily-sadaqah"], "ramadanDailyTarget": 250}]}

It is consulted once at startup. A default only fills a field that has no
persisted value, so anything an admin saved locally wins.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from kiosk.services.sync_service import StateSynchronizer

logger = logging.getLogger(__name__)

# Feed keys that differ from CampaignState wire keys
FEED_KEY_MAP = {"tabs": "visibleCategories"}


class MasjidConfig(BaseModel):
    """One installation entry; unknown keys are kept as state defaults."""

    model_config = ConfigDict(extra="allow")

    slug: str
    aliases: List[str] = Field(default_factory=list)
    name: str = "Masjid Kiosk"
    address: str = ""
    phone: str = ""
    email: str = ""
    charity_number: str = Field(default="", alias="charityNumber")


class MasjidConfigResponse(BaseModel):
    """Top-level feed document."""

    masjids: List[MasjidConfig] = Field(default_factory=list)


def find_masjid_config(
    configs: List[MasjidConfig], slug: Optional[str]
) -> Optional[MasjidConfig]:
    """Match an installation by slug, then by alias (case-insensitive)."""
    if not slug:
        return None
    normalized = slug.lower()
    for config in configs:
        if config.slug.lower() == normalized:
            return config
    for config in configs:
        if any(alias.lower() == normalized for alias in config.aliases):
            return config
    return None


def load_feed(source: str, timeout: float = 5.0) -> Optional[MasjidConfigResponse]:
    """
    Fetch and parse the feed from a URL or a local path.

    Args:
        source: http(s) URL or filesystem path
        timeout: HTTP timeout in seconds

    Returns:
        Parsed document, or None if it could not be loaded
    """
    try:
        if source.startswith(("http://", "https://")):
            response = httpx.get(source, timeout=timeout)
            response.raise_for_status()
            data = response.json()
        else:
            data = json.loads(Path(source).read_text(encoding="utf-8"))
        return MasjidConfigResponse.model_validate(data)
    except httpx.HTTPError as e:
        logger.warning(f"Failed to fetch config feed {source}: {e}")
    except ValidationError as e:
        logger.warning(f"Config feed {source} has unexpected shape: {e}")
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to read config feed {source}: {e}")
    return None


def feed_defaults(config: MasjidConfig) -> Dict[str, Any]:
    """State defaults carried by an installation entry, keyed by wire key."""
    extras = config.model_extra or {}
    return {FEED_KEY_MAP.get(key, key): value for key, value in extras.items()}


def apply_config_feed(
    synchronizer: StateSynchronizer, source: Optional[str], slug: Optional[str]
) -> Optional[MasjidConfig]:
    """Load the feed and apply the matching installation's defaults.

    Returns:
        The matching installation entry, or None
    """
    if not source or not slug:
        logger.info("No config feed or installation slug configured")
        return None

    document = load_feed(source)
    if document is None:
        return None

    config = find_masjid_config(document.masjids, slug)
    if config is None:
        logger.warning(f"Installation '{slug}' not found in config feed")
        return None

    applied = synchronizer.apply_defaults(feed_defaults(config))
    logger.info(f"Applied {len(applied)} installation default(s) for '{config.slug}': {applied}")
    return config


__all__ = [
    "MasjidConfig",
    "MasjidConfigResponse",
    "apply_config_feed",
    "feed_defaults",
    "find_masjid_config",
    "load_feed",
]
