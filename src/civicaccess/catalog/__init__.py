"""Mission catalog — static registry of gated missions."""

from civicaccess.catalog.registry import MissionCatalog, MissionNotFoundError

__all__ = ["MissionCatalog", "MissionNotFoundError"]
