from enum import Enum
from typing import Optional


class Level(str, Enum):
    """Progression tiers, lowest first. Compare with `rank`, not with `<` (values are strings)."""

    HAT = "hat"
    NAY_MAM = "nay_mam"
    CAY_CON = "cay_con"
    CAY_TO = "cay_to"

    @property
    def rank(self) -> int:
        return LEVEL_ORDER.index(self)

    def next(self) -> Optional["Level"]:
        idx = self.rank + 1
        return LEVEL_ORDER[idx] if idx < len(LEVEL_ORDER) else None

    def previous(self) -> Optional["Level"]:
        idx = self.rank - 1
        return LEVEL_ORDER[idx] if idx >= 0 else None

    @property
    def display_name(self) -> str:
        return LEVEL_DISPLAY[self]["name"]

    @property
    def icon(self) -> str:
        return LEVEL_DISPLAY[self]["icon"]


LEVEL_ORDER = (Level.HAT, Level.NAY_MAM, Level.CAY_CON, Level.CAY_TO)
MAX_LEVEL = LEVEL_ORDER[-1]

LEVEL_DISPLAY = {
    Level.HAT: {"name": "Hạt", "icon": "🌰", "color": "#8B4513"},
    Level.NAY_MAM: {"name": "Nảy mầm", "icon": "🌱", "color": "#90EE90"},
    Level.CAY_CON: {"name": "Cây con", "icon": "🌿", "color": "#4CAF50"},
    Level.CAY_TO: {"name": "Cây to", "icon": "🌳", "color": "#2E7D32"},
}


class StudentSort(str, Enum):
    POINTS = "points"
    NAME = "name"
    ORDER = "order"


# Reason written to history for every reward redemption.
REDEMPTION_REASON = "Đổi quà"
DEFAULT_POSITIVE_REASON = "Cộng điểm"
DEFAULT_NEGATIVE_REASON = "Trừ điểm"
DEFAULT_REWARD_ICON = "🎁"
