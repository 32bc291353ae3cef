"""Read-only product lookups against the "product" collection."""
from typing import Any, Dict, Iterable, Optional

from bson import ObjectId

from schemas import Product


def product_from_document(doc: Dict[str, Any]) -> Product:
    doc = dict(doc)
    doc["id"] = str(doc.pop("_id"))
    return Product.model_validate(doc)


class MongoCatalog:
    def __init__(self, collection):
        self.collection = collection

    def get(self, product_id: str) -> Optional[Product]:
        if not ObjectId.is_valid(product_id):
            return None
        doc = self.collection.find_one({"_id": ObjectId(product_id)})
        return product_from_document(doc) if doc else None

    def count_active(self, product_ids: Iterable[str]) -> int:
        ids = [ObjectId(pid) for pid in product_ids if ObjectId.is_valid(pid)]
        return self.collection.count_documents({"_id": {"$in": ids}, "is_active": True})
