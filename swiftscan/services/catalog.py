import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from ..models.product import Product

logger = logging.getLogger(__name__)


class ProductNotFound(LookupError):
    pass


class Catalog:
    """Read-only product catalog, loaded once at startup"""

    def __init__(self, products: List[Product]):
        self._by_id: Dict[str, Product] = {}
        self._by_barcode: Dict[str, Product] = {}
        for product in products:
            if product.id in self._by_id:
                raise ValueError(f"Duplicate product id in catalog: {product.id}")
            if product.barcode in self._by_barcode:
                raise ValueError(f"Duplicate barcode in catalog: {product.barcode}")
            self._by_id[product.id] = product
            self._by_barcode[product.barcode] = product

    @classmethod
    def from_file(cls, db_path: str) -> "Catalog":
        with open(db_path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        products = [Product.from_dict(p) for p in data.get("products", [])]
        logger.info(f"Loaded {len(products)} products from {Path(db_path).name}")
        return cls(products)

    def get_products(self) -> List[Product]:
        return list(self._by_id.values())

    def get_product(self, product_id: str) -> Optional[Product]:
        return self._by_id.get(product_id)

    def get_product_by_barcode(self, barcode: str) -> Optional[Product]:
        return self._by_barcode.get(barcode.strip())

    def get_product_flexible(self, product_id: str) -> Optional[Product]:
        """Get product with flexible ID matching"""
        product = self.get_product(product_id)
        if product:
            return product

        # Try with dash/underscore variations
        variations = [
            product_id.strip(),
            product_id.replace('_', '-'),
            product_id.replace('-', '_'),
            product_id.lower(),
            product_id.lower().replace('_', '-'),
            product_id.lower().replace('-', '_')
        ]

        for variant in variations:
            product = self.get_product(variant)
            if product:
                return product

        normalized = product_id.replace('-', '').replace('_', '').lower()
        for p in self._by_id.values():
            if p.id.replace('-', '').replace('_', '').lower() == normalized:
                return p

        return None

    def require(self, product_id: str) -> Product:
        product = self.get_product_flexible(product_id)
        if product is None:
            raise ProductNotFound(f"Product {product_id} not found")
        return product

    def __len__(self):
        return len(self._by_id)
