# salesdesk/services/pricing.py
from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import or_
from sqlalchemy.orm import Session

from salesdesk.errors import NotFound, ValidationError
from salesdesk.models import PricingTier, Product


@dataclass(frozen=True)
class PricedLine:
    product: Product
    quantity: int
    unit_price: int
    total_price: int
    tier_id: str | None = None


class PricingResolver:
    """Unit price for (product, quantity): matching active tier, else base price."""

    def __init__(self, session: Session):
        self.session = session

    def matching_tier(self, product_id: str, quantity: int) -> PricingTier | None:
        # Highest min_quantity that still covers the quantity wins.
        return (
            self.session.query(PricingTier)
            .filter(
                PricingTier.product_id == product_id,
                PricingTier.is_active.is_(True),
                PricingTier.min_quantity <= quantity,
                or_(PricingTier.max_quantity.is_(None), PricingTier.max_quantity >= quantity),
            )
            .order_by(PricingTier.min_quantity.desc())
            .first()
        )

    def price_line(self, product_id: str, quantity: int) -> PricedLine:
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise ValidationError("Quantity must be a positive whole number", field="quantity", product_id=product_id)

        product = self.session.get(Product, product_id)
        if not product:
            raise NotFound("Product", product_id, message=f"Product with ID {product_id} not found")

        tier = self.matching_tier(product.id, quantity)
        unit_price = tier.price_per_unit if tier else product.base_price

        return PricedLine(
            product=product,
            quantity=quantity,
            unit_price=int(unit_price),
            total_price=int(unit_price) * quantity,
            tier_id=tier.id if tier else None,
        )

    def resolve_unit_price(self, product_id: str, quantity: int) -> int:
        return self.price_line(product_id, quantity).unit_price
