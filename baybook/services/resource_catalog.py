"""
Resource Catalog

Static description of the bookable bays and the venue's operating hours.
Loaded once from configuration and read-only at runtime.
"""

import json
import logging
import enum
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional, Tuple

from ..config import settings as default_settings, Settings

logger = logging.getLogger(__name__)


class ResourceCategory(str, enum.Enum):
    GENERAL = "general"
    MEMBERS_ONLY = "members_only"


@dataclass(frozen=True)
class Resource:
    id: int
    label: str
    category: str = ResourceCategory.GENERAL.value
    capacity: int = 4

    @property
    def members_only(self) -> bool:
        return self.category == ResourceCategory.MEMBERS_ONLY.value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "label": self.label,
            "category": self.category,
            "capacity": self.capacity,
        }


class ResourceCatalog:
    """
    Bays plus operating-hour windows.

    Hours are (open, close) in whole hours; a booking must start at or after
    open and end at or before close.
    """

    def __init__(self, resources: List[Resource], config: Optional[Settings] = None):
        self.config = config or default_settings
        self._resources: Dict[int, Resource] = {r.id: r for r in resources}

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "ResourceCatalog":
        config = config or default_settings
        return cls(parse_catalog(config.resource_catalog), config)

    @property
    def resources(self) -> List[Resource]:
        return sorted(self._resources.values(), key=lambda r: r.id)

    def get(self, resource_id: int) -> Optional[Resource]:
        return self._resources.get(resource_id)

    def is_weekend(self, check_date: date) -> bool:
        return check_date.weekday() in self.config.weekend_day_numbers

    def hours_for(self, check_date: date) -> Tuple[int, int]:
        if self.is_weekend(check_date):
            return self.config.weekend_open_hour, self.config.weekend_close_hour
        return self.config.weekday_open_hour, self.config.weekday_close_hour

    def window_minutes(self, check_date: date) -> Tuple[int, int]:
        open_hour, close_hour = self.hours_for(check_date)
        return open_hour * 60, close_hour * 60


def parse_catalog(raw: str) -> List[Resource]:
    """
    Parse the RESOURCE_CATALOG JSON list.

    Entries without an integer id are skipped with a warning; a catalog
    that is not valid JSON is a configuration error and raises.
    """
    try:
        entries = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"RESOURCE_CATALOG is not valid JSON: {e}")

    resources = []
    for entry in entries:
        try:
            resource_id = int(entry["id"])
        except (KeyError, TypeError, ValueError):
            logger.warning(f"Skipping catalog entry without a valid id: {entry}")
            continue

        category = entry.get("category", ResourceCategory.GENERAL.value)
        if category not in (c.value for c in ResourceCategory):
            logger.warning(f"Unknown category {category!r} for resource {resource_id}, using general")
            category = ResourceCategory.GENERAL.value

        resources.append(Resource(
            id=resource_id,
            label=entry.get("label") or f"Bay {resource_id}",
            category=category,
            capacity=int(entry.get("capacity", 4)),
        ))

    return resources
