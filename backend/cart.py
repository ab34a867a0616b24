"""
Shopping cart aggregate.

The cart is owned by a single caller and persists itself through a
``CartStorage`` after every change. Prices and stock are snapshots taken when an
item is added; checkout re-validates everything against the catalog.
"""
from __future__ import annotations
import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Optional, Protocol

from pricing import compute_totals

logger = logging.getLogger(__name__)


class InsufficientStockError(Exception):
    """Raised when a quantity exceeds the stock seen when the item was added."""

    def __init__(self, product_id: str, available: int):
        self.product_id = product_id
        self.available = available
        super().__init__(f"Only {available} items available in stock")


@dataclass
class CartItem:
    product_id: str
    title: str
    price: float
    quantity: int
    stock: int
    image: Optional[str] = None


class CartStorage(Protocol):
    def load(self) -> list[dict[str, Any]]: ...

    def save(self, items: list[dict[str, Any]]) -> None: ...


class MemoryCartStorage:
    def __init__(self, items: Optional[list[dict[str, Any]]] = None):
        self.items = list(items or [])

    def load(self) -> list[dict[str, Any]]:
        return [dict(i) for i in self.items]

    def save(self, items: list[dict[str, Any]]) -> None:
        self.items = [dict(i) for i in items]


class JsonFileCartStorage:
    """Keeps the cart in a JSON file, the way a browser keeps it in local storage."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def load(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            data = json.loads(self.path.read_text())
        except (OSError, ValueError) as e:
            logger.warning("Error loading cart from %s: %s", self.path, e)
            return []
        return data if isinstance(data, list) else []

    def save(self, items: list[dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(items, indent=2))


class Cart:
    def __init__(self, storage: CartStorage):
        self.storage = storage
        self._items: dict[str, CartItem] = {}
        for raw in storage.load():
            try:
                item = CartItem(**raw)
            except TypeError:
                logger.warning("Dropping malformed cart entry: %r", raw)
                continue
            self._items[item.product_id] = item

    @property
    def items(self) -> list[CartItem]:
        return list(self._items.values())

    def _persist(self) -> None:
        self.storage.save([asdict(i) for i in self._items.values()])

    def add(self, product: dict[str, Any], quantity: int = 1) -> Optional[CartItem]:
        """
        Add ``quantity`` of a catalog product, merging with an existing line.

        A line whose quantity drops to zero or below is removed.
        """
        product_id = str(product.get("id") or product.get("product_id"))
        existing = self._items.get(product_id)
        new_quantity = (existing.quantity if existing else 0) + quantity
        if new_quantity <= 0:
            self.remove(product_id)
            return None
        if existing:
            existing.quantity = new_quantity
        else:
            existing = CartItem(
                product_id=product_id,
                title=product["title"],
                price=float(product["price"]),
                quantity=quantity,
                stock=int(product.get("stock", 0)),
                image=product.get("image"),
            )
            self._items[product_id] = existing
        self._persist()
        return existing

    def update_quantity(self, product_id: str, quantity: int) -> None:
        if quantity <= 0:
            self.remove(product_id)
            return
        item = self._items.get(product_id)
        if item is None:
            return
        if quantity > item.stock:
            raise InsufficientStockError(product_id, item.stock)
        item.quantity = quantity
        self._persist()

    def remove(self, product_id: str) -> None:
        if self._items.pop(product_id, None) is not None:
            self._persist()

    def clear(self) -> None:
        self._items.clear()
        self._persist()

    def contains(self, product_id: str) -> bool:
        return product_id in self._items

    def quantity_of(self, product_id: str) -> int:
        item = self._items.get(product_id)
        return item.quantity if item else 0

    @property
    def item_count(self) -> int:
        return sum(i.quantity for i in self._items.values())

    def totals(self) -> dict[str, Any]:
        totals = compute_totals((i.price, i.quantity) for i in self._items.values())
        return {**totals._asdict(), "item_count": self.item_count}

    def checkout_items(self) -> list[dict[str, Any]]:
        return [{"product_id": i.product_id, "quantity": i.quantity} for i in self._items.values()]
