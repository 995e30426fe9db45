# backend/modules/loyalty/services/tier_catalog.py

"""
Static, ordered tier table with benefit rows.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence

from ..data.default_tiers import DEFAULT_TIERS


@dataclass(frozen=True)
class TierBenefits:
    discount_percentage: float
    point_multiplier: float
    priority_booking: bool
    free_delivery_threshold: Optional[float]
    birthday_bonus_points: int


@dataclass(frozen=True)
class TierDefinition:
    """A named bracket [min_points, max_points) of the live balance"""

    name: str
    min_points: int
    max_points: float
    benefits: TierBenefits
    display_name: Optional[str] = None

    def contains(self, points: int) -> bool:
        return self.min_points <= points < self.max_points

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TierDefinition":
        return cls(
            name=data["name"],
            min_points=data["min_points"],
            max_points=data["max_points"],
            benefits=TierBenefits(**data["benefits"]),
            display_name=data.get("display_name", data["name"].title()),
        )


class TierCatalog:
    """Ordered tier lookup. Never mutated after construction."""

    def __init__(self, tiers: Sequence[TierDefinition]):
        self._tiers: List[TierDefinition] = list(tiers)
        self._validate()
        self._by_name = {tier.name: tier for tier in self._tiers}
        self._rank = {tier.name: index for index, tier in enumerate(self._tiers)}

    def _validate(self) -> None:
        if not self._tiers:
            raise ValueError("Tier catalog must define at least one tier")

        names = [tier.name for tier in self._tiers]
        if len(set(names)) != len(names):
            raise ValueError(f"Tier names must be unique: {names}")

        if self._tiers[0].min_points != 0:
            raise ValueError("The first tier must start at 0 points")

        for current, following in zip(self._tiers, self._tiers[1:]):
            if current.max_points != following.min_points:
                raise ValueError(
                    f"Tier {current.name} must end where {following.name} starts "
                    f"({current.max_points} != {following.min_points})"
                )

        if self._tiers[-1].max_points != math.inf:
            raise ValueError("The top tier must be open ended")

        for tier in self._tiers:
            if tier.min_points >= tier.max_points:
                raise ValueError(f"Tier {tier.name} has an empty point range")
            if tier.benefits.point_multiplier < 1:
                raise ValueError(f"Tier {tier.name} multiplier must be at least 1")

    def __iter__(self) -> Iterator[TierDefinition]:
        return iter(self._tiers)

    def __len__(self) -> int:
        return len(self._tiers)

    def __contains__(self, name: str) -> bool:
        return name in self._by_name

    def get(self, name: str) -> TierDefinition:
        try:
            return self._by_name[name]
        except KeyError:
            raise KeyError(f"Unknown tier: {name}")

    def rank(self, name: str) -> int:
        """Position of the tier in the succession, 0 for the lowest"""
        return self._rank[self.get(name).name]

    def tier_for_points(self, points: int) -> TierDefinition:
        # Balances are never negative
        points = max(points, 0)
        for tier in self._tiers:
            if tier.contains(points):
                return tier
        return self._tiers[-1]

    def next_tier(self, tier: TierDefinition) -> Optional[TierDefinition]:
        index = self._rank[tier.name]
        if index + 1 < len(self._tiers):
            return self._tiers[index + 1]
        return None


def default_tier_catalog() -> TierCatalog:
    return TierCatalog([TierDefinition.from_dict(data) for data in DEFAULT_TIERS])
