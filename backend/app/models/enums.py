"""Closed value sets used by the ledger schema and the feed boundary."""

import enum


class Project(str, enum.Enum):
    """Game project a deliverable is tagged with.

    Stored as a comma-separated list of codes on deliverable_diff.project_ids.
    """

    STAR_CITIZEN = "SC"
    SQUADRON_42 = "SQ42"

    @property
    def title(self) -> str:
        return _PROJECT_TITLES[self]

    @classmethod
    def from_title(cls, title: str | None) -> "Project | None":
        """Map a feed project title ("Star Citizen") to its code, or None."""
        for project, project_title in _PROJECT_TITLES.items():
            if title == project_title:
                return project
        return None


_PROJECT_TITLES = {
    Project.STAR_CITIZEN: "Star Citizen",
    Project.SQUADRON_42: "Squadron 42",
}


class CardCategory(str, enum.Enum):
    """Release view card category."""

    CORE_TECH = "Core Tech"
    GAMEPLAY = "Gameplay"
    CHARACTERS = "Characters"
    LOCATIONS = "Locations"
    AI = "AI"
    SHIPS_AND_VEHICLES = "Ships and Vehicles"
    WEAPONS_AND_ITEMS = "Weapons and Items"

    @classmethod
    def parse(cls, value: object) -> "CardCategory | None":
        """Accept the feed's numeric category id or a category name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return _CATEGORY_IDS.get(value)
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.isdigit():
                return _CATEGORY_IDS.get(int(stripped))
            for category in cls:
                if category.value.lower() == stripped.lower():
                    return category
        return None


_CATEGORY_IDS = {
    1: CardCategory.CORE_TECH,
    2: CardCategory.GAMEPLAY,
    3: CardCategory.CHARACTERS,
    4: CardCategory.LOCATIONS,
    5: CardCategory.AI,
    6: CardCategory.SHIPS_AND_VEHICLES,
    7: CardCategory.WEAPONS_AND_ITEMS,
}


class IngestionStatus(str, enum.Enum):
    """Outcome of one ingestion attempt."""

    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"
