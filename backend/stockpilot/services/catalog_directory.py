"""Read-only checks against the product, supplier and location directories."""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from stockpilot.core.exceptions import ReferentialIntegrityFailure
from stockpilot.models.location import Location
from stockpilot.models.product import Product
from stockpilot.models.supplier import Supplier

logger = logging.getLogger(__name__)


class CatalogDirectory:
    """Validates that referenced catalog entries exist and are active."""

    def __init__(self, db: Session):
        self.db = db

    def require_active_supplier(self, supplier_id: int) -> Supplier:
        supplier = self.db.get(Supplier, supplier_id)
        if supplier is None:
            raise ReferentialIntegrityFailure("Supplier", supplier_id)
        if not supplier.is_active:
            raise ReferentialIntegrityFailure("Supplier", supplier_id, "supplier is inactive")
        return supplier

    def require_active_product(self, product_id: int) -> Product:
        product = self.db.get(Product, product_id)
        if product is None:
            raise ReferentialIntegrityFailure("Product", product_id)
        if not product.active:
            raise ReferentialIntegrityFailure("Product", product_id, "product is inactive")
        return product

    def resolve_location(self, location_id: Optional[int]) -> Location:
        """Return the requested location, or the default one when none is given."""
        if location_id is None:
            location = (
                self.db.query(Location)
                .filter(Location.is_default.is_(True), Location.active.is_(True))
                .order_by(Location.id)
                .first()
            )
            if location is None:
                raise ReferentialIntegrityFailure("Location", "default", "no active default location")
            logger.debug(f"Using default location {location.id}")
            return location

        location = self.db.get(Location, location_id)
        if location is None:
            raise ReferentialIntegrityFailure("Location", location_id)
        if not location.active:
            raise ReferentialIntegrityFailure("Location", location_id, "location is inactive")
        return location
