"""Giving categories offered by the kiosk."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Category:
    """A giving category (one kiosk tab)."""

    id: str
    label: str


DAILY_SADAQAH = "daily-sadaqah"
ZAKAT = "zakat"
RAMADAN_IFTAAR = "ramadan-iftaar"
ZAKAT_FITR = "zakat-fitr"
SPECIAL_APPEALS = "special-appeals"

# Category whose contributions are split across campaign days
BUCKETED_CATEGORY = RAMADAN_IFTAAR
# Category tracked against a single fundraising target
SINGLE_TARGET_CATEGORY = SPECIAL_APPEALS
# Category priced per person
PER_PERSON_CATEGORY = ZAKAT_FITR

CATEGORIES: tuple[Category, ...] = (
    Category(DAILY_SADAQAH, "Sadaqah Yaumiyyah"),
    Category(ZAKAT, "Zakat"),
    Category(RAMADAN_IFTAAR, "Ramadan Iftaar"),
    Category(ZAKAT_FITR, "Zakat al-Fitr"),
    Category(SPECIAL_APPEALS, "Special Appeals"),
)

CATEGORY_IDS: tuple[str, ...] = tuple(category.id for category in CATEGORIES)

_BY_ID = {category.id: category for category in CATEGORIES}


def get_category(category_id: str) -> Optional[Category]:
    return _BY_ID.get(category_id)
