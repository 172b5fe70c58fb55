# Overview: Service-layer operations for price resolution; the lookup consulted once per sale.

from __future__ import annotations

from datetime import date
from typing import Optional, Protocol

from flask import current_app

from ..extensions import db
from ..models import Product


class PriceResolver(Protocol):
    """
    Resolve a unit price (minor currency units) for a product.

    location_ref / point_ref narrow the lookup to a machine's location or
    service point; as_of selects the price in force on that date. Returns
    None when no price applies.
    """

    def resolve(
        self,
        product_id: int,
        location_ref: Optional[str] = None,
        point_ref: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> Optional[int]:
        ...


class CatalogPriceResolver:
    """Flat catalog price: Product.price_cents for active products, ignoring location."""

    def resolve(self, product_id, location_ref=None, point_ref=None, as_of=None):
        product = db.session.get(Product, product_id)
        if product is None or not product.is_active:
            return None
        return product.price_cents


def get_price_resolver() -> PriceResolver:
    return current_app.extensions["vending.price_resolver"]
