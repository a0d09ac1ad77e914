# product.py
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Product:
    """Catalog entry"""
    id: str
    name: str
    price: float
    category: str
    barcode: str
    image: Optional[str] = None

    def __str__(self):
        return f"{self.name} - ${self.price:.2f}"

    @classmethod
    def from_dict(cls, data: dict) -> "Product":
        price = float(data["price"])
        if price < 0:
            raise ValueError(f"Product {data['id']} has a negative price")
        return cls(
            id=str(data["id"]),
            name=data["name"],
            price=price,
            category=data.get("category", ""),
            barcode=str(data["barcode"]),
            image=data.get("image"),
        )

    def to_dict(self):
        """Convert to dictionary"""
        return {
            'id': self.id,
            'name': self.name,
            'price': self.price,
            'category': self.category,
            'barcode': self.barcode,
            'image': self.image
        }
