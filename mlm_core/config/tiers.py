"""
Tier catalog configuration and constants.
Loads from a JSON file named by Config, falls back to the built-in cloud-shop levels.
"""
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TierDefinition:
    """Single tier row of the catalog."""
    tierId: int
    name: str
    purchaseDiscount: Decimal  # fraction off list price
    monthlyTarget: Decimal
    commissionRate: Decimal = Decimal("0")
    minDirectMembers: int = 0
    minTeamSize: int = 0
    description: str = ""

    def __post_init__(self):
        if not (Decimal("0") < self.purchaseDiscount <= Decimal("1")):
            raise ValueError(
                f"Tier {self.tierId}: purchaseDiscount must be in (0, 1], "
                f"got {self.purchaseDiscount}"
            )
        if self.monthlyTarget < 0:
            raise ValueError(f"Tier {self.tierId}: monthlyTarget must be >= 0")
        if not (Decimal("0") <= self.commissionRate < Decimal("1")):
            raise ValueError(f"Tier {self.tierId}: commissionRate must be in [0, 1)")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TierDefinition":
        try:
            return cls(
                tierId=int(data["tierId"]),
                name=str(data["name"]),
                purchaseDiscount=Decimal(str(data["purchaseDiscount"])),
                monthlyTarget=Decimal(str(data["monthlyTarget"])),
                commissionRate=Decimal(str(data.get("commissionRate", "0"))),
                minDirectMembers=int(data.get("minDirectMembers", 0)),
                minTeamSize=int(data.get("minTeamSize", 0)),
                description=str(data.get("description", "")),
            )
        except KeyError as e:
            raise ValueError(f"Tier definition missing field {e}") from e


@dataclass(frozen=True)
class TierCatalog:
    """
    Immutable, ordered tier table.

    Invariants checked on construction:
    - tier ids are contiguous starting at 1
    - purchaseDiscount, monthlyTarget and commissionRate never decrease
      as tier id increases
    """
    tiers: Tuple[TierDefinition, ...]
    _byId: Dict[int, TierDefinition] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if not self.tiers:
            raise ValueError("Tier catalog must define at least one tier")

        ordered = tuple(sorted(self.tiers, key=lambda t: t.tierId))
        expected_ids = list(range(1, len(ordered) + 1))
        if [t.tierId for t in ordered] != expected_ids:
            raise ValueError(
                f"Tier ids must be contiguous from 1, got {[t.tierId for t in ordered]}"
            )

        for lower, higher in zip(ordered, ordered[1:]):
            if higher.purchaseDiscount < lower.purchaseDiscount:
                raise ValueError(
                    f"Tier {higher.tierId} discount {higher.purchaseDiscount} "
                    f"is lower than tier {lower.tierId} ({lower.purchaseDiscount})"
                )
            if higher.monthlyTarget < lower.monthlyTarget:
                raise ValueError(
                    f"Tier {higher.tierId} target {higher.monthlyTarget} "
                    f"is lower than tier {lower.tierId} ({lower.monthlyTarget})"
                )
            if higher.commissionRate < lower.commissionRate:
                raise ValueError(
                    f"Tier {higher.tierId} commission {higher.commissionRate} "
                    f"is lower than tier {lower.tierId} ({lower.commissionRate})"
                )

        object.__setattr__(self, "tiers", ordered)
        object.__setattr__(self, "_byId", {t.tierId: t for t in ordered})

    @classmethod
    def from_dicts(cls, rows: Iterable[Dict[str, Any]]) -> "TierCatalog":
        return cls(tuple(TierDefinition.from_dict(row) for row in rows))

    def __len__(self) -> int:
        return len(self.tiers)

    def __iter__(self):
        return iter(self.tiers)

    @property
    def lowest(self) -> TierDefinition:
        return self.tiers[0]

    @property
    def highest(self) -> TierDefinition:
        return self.tiers[-1]

    @property
    def maxCommissionRate(self) -> Decimal:
        return self.highest.commissionRate

    def get(self, tierId: int) -> TierDefinition:
        """
        Get tier by id.

        Raises:
            ValueError: If tier id is not in the catalog
        """
        try:
            return self._byId[tierId]
        except KeyError:
            raise ValueError(f"Unknown tier id {tierId}") from None

    def tierFor(self, metricValue: Decimal) -> Optional[TierDefinition]:
        """
        Highest tier whose target is met.

        Targets are inclusive lower bounds: a value exactly equal to a
        threshold qualifies for that tier.

        Returns:
            TierDefinition or None if no target is met
        """
        value = Decimal(str(metricValue))
        qualified = None
        for tier in self.tiers:
            if value >= tier.monthlyTarget:
                qualified = tier
            else:
                break
        return qualified

    def discountedPrice(self, tierId: int, listPrice: Decimal) -> Decimal:
        """Purchase price for a member of the given tier."""
        tier = self.get(tierId)
        price = Decimal(str(listPrice)) * (Decimal("1") - tier.purchaseDiscount)
        return price.quantize(Decimal("0.01"))


# Built-in cloud-shop levels. Discounts are expressed as fraction off list
# price, so a 0.4 purchase multiplier becomes a 0.60 discount.
DEFAULT_TIER_ROWS: List[Dict[str, Any]] = [
    {"tierId": 1, "name": "一星店长", "purchaseDiscount": "0.60", "monthlyTarget": "2400",
     "commissionRate": "0.08", "minDirectMembers": 0, "minTeamSize": 0,
     "description": "Base shop level, no team requirement"},
    {"tierId": 2, "name": "二星店长", "purchaseDiscount": "0.65", "monthlyTarget": "12000",
     "commissionRate": "0.10", "minDirectMembers": 2, "minTeamSize": 2,
     "description": "Two directly referred one-star shops"},
    {"tierId": 3, "name": "三星店长", "purchaseDiscount": "0.70", "monthlyTarget": "72000",
     "commissionRate": "0.12", "minDirectMembers": 2, "minTeamSize": 4,
     "description": "Two directly referred two-star shops"},
    {"tierId": 4, "name": "四星店长", "purchaseDiscount": "0.74", "monthlyTarget": "360000",
     "commissionRate": "0.14", "minDirectMembers": 2, "minTeamSize": 8,
     "description": "Two directly referred three-star shops"},
    {"tierId": 5, "name": "五星店长", "purchaseDiscount": "0.76", "monthlyTarget": "1200000",
     "commissionRate": "0.16", "minDirectMembers": 2, "minTeamSize": 16,
     "description": "Two directly referred four-star shops"},
    {"tierId": 6, "name": "董事", "purchaseDiscount": "0.78", "monthlyTarget": "6000000",
     "commissionRate": "0.20", "minDirectMembers": 2, "minTeamSize": 32,
     "description": "Two directly referred five-star shops"},
]


def load_tier_catalog(path: Optional[str] = None) -> TierCatalog:
    """
    Load tier catalog from a JSON file or the built-in default.

    The file holds a list of tier objects (same keys as DEFAULT_TIER_ROWS).

    Args:
        path: JSON file path; when None, Config.TIER_CATALOG_PATH is used

    Raises:
        ValueError: If the file content is not a valid catalog
    """
    if path is None:
        from config import Config
        path = Config.get(Config.TIER_CATALOG_PATH)

    if not path:
        logger.info("TIER_CATALOG_PATH not set, using built-in cloud-shop tiers")
        return TierCatalog.from_dicts(DEFAULT_TIER_ROWS)

    with open(path, encoding="utf-8") as fh:
        try:
            rows = json.load(fh)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid tier catalog JSON in {path}: {e}")
            raise ValueError(f"Invalid tier catalog JSON in {path}: {e}") from e

    if not isinstance(rows, list):
        raise ValueError(f"Tier catalog in {path} must be a JSON list")

    return TierCatalog.from_dicts(rows)


# Lazy-loaded catalog cache
_TIER_CATALOG_CACHE: Optional[TierCatalog] = None


def get_tier_catalog_cached() -> TierCatalog:
    """
    Get tier catalog with caching.
    Loads on first access, then returns cached version.
    """
    global _TIER_CATALOG_CACHE

    if _TIER_CATALOG_CACHE is None:
        _TIER_CATALOG_CACHE = load_tier_catalog()
        logger.info(f"Loaded tier catalog: {len(_TIER_CATALOG_CACHE)} tiers")

    return _TIER_CATALOG_CACHE


def reset_tier_catalog_cache():
    """Drop the cached catalog (config reload, tests)."""
    global _TIER_CATALOG_CACHE
    _TIER_CATALOG_CACHE = None


# Public accessor - use this everywhere instead of a module constant
def TIER_CATALOG() -> TierCatalog:
    """Get current tier catalog."""
    return get_tier_catalog_cached()
