"""
Fixed-price shop purchase plans (bundle shops).
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import Optional

# Allowed gap between entryFee and bundledUnits * unitPrice (promotional rounding)
PLAN_PRICE_TOLERANCE = Decimal("0.05")


@dataclass(frozen=True)
class ShopPurchasePlan:
    """
    One-off bundle purchase that opens a shop.

    giftRatio r means one free unit per floor(1/r) purchased units.
    """
    name: str
    entryFee: Decimal
    bundledUnits: int
    unitPrice: Decimal
    giftRatio: Decimal
    giftThreshold: Decimal = Decimal("0")
    description: str = ""

    def __post_init__(self):
        if self.entryFee <= 0:
            raise ValueError(f"Plan '{self.name}': entryFee must be positive")
        if self.bundledUnits <= 0:
            raise ValueError(f"Plan '{self.name}': bundledUnits must be positive")
        if self.unitPrice <= 0:
            raise ValueError(f"Plan '{self.name}': unitPrice must be positive")
        if not (Decimal("0") < self.giftRatio < Decimal("1")):
            raise ValueError(f"Plan '{self.name}': giftRatio must be in (0, 1)")
        if self.giftThreshold < 0:
            raise ValueError(f"Plan '{self.name}': giftThreshold must be >= 0")

        bundle_value = self.unitPrice * self.bundledUnits
        if abs(self.entryFee - bundle_value) > self.entryFee * PLAN_PRICE_TOLERANCE:
            raise ValueError(
                f"Plan '{self.name}': entryFee {self.entryFee} does not match "
                f"{self.bundledUnits} x {self.unitPrice} = {bundle_value}"
            )

    @property
    def giftEvery(self) -> int:
        """Number of purchased units that earn one gift unit."""
        return int((Decimal("1") / self.giftRatio).to_integral_value(rounding=ROUND_FLOOR))

    def giftUnits(self, purchasedUnits: int, qualifiedAmount: Optional[Decimal] = None) -> int:
        """
        Free units earned for a purchase.

        Args:
            purchasedUnits: Units bought in the qualifying order
            qualifiedAmount: Order amount; below giftThreshold no gift is given

        Returns:
            Whole number of gift units
        """
        if purchasedUnits < 0:
            raise ValueError("purchasedUnits must be >= 0")

        if qualifiedAmount is not None and Decimal(str(qualifiedAmount)) < self.giftThreshold:
            return 0

        return purchasedUnits // self.giftEvery

    @property
    def bundleGiftUnits(self) -> int:
        """Gift units included with the initial bundle."""
        return self.giftUnits(self.bundledUnits)


WUTONG_SHOP_PLAN = ShopPurchasePlan(
    name="五通店",
    entryFee=Decimal("27000"),
    bundledUnits=100,
    unitPrice=Decimal("270"),
    giftRatio=Decimal("0.1"),
    giftThreshold=Decimal("5999"),
    description="One-off 100-unit bundle, lifetime buy-10-get-1",
)
