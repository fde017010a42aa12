"""
Client-held shopping cart (carrinho).

The cart lives on the client until checkout. ``Cart`` holds the rules and
writes every change through a ``CartStore``, so the same aggregate can be
kept in memory (tests), in a JSON file per user (the TUI), or anywhere else.
"""
from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, replace
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, Tuple

from feirasmart.utils.errors import NotFoundError, ValidationError
from feirasmart.utils.logger import get_logger
from feirasmart.utils.pure import CENT, parse_money

_logger = get_logger(__name__)


def _check_qty(qty) -> int:
    if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
        raise ValidationError("Quantity must be a positive integer.")
    return qty


@dataclass(frozen=True)
class CartItem:
    pid: int
    vid: int
    mid: Optional[int]
    name: str
    price: Decimal
    unit: str
    qty: int
    vendor_name: str = ""

    @property
    def line_total(self) -> Decimal:
        return self.price * self.qty

    def to_json(self) -> dict:
        data = asdict(self)
        data["price"] = str(self.price)
        return data

    @classmethod
    def from_json(cls, data: dict) -> "CartItem":
        """Rebuild a saved line; raises ValidationError for a bad price or quantity."""
        return cls(
            pid=int(data["pid"]),
            vid=int(data["vid"]),
            mid=int(data["mid"]) if data.get("mid") not in (None, "") else None,
            name=data["name"],
            price=parse_money(data["price"], "price", allow_zero=False),
            unit=data.get("unit", ""),
            qty=_check_qty(data["qty"]),
            vendor_name=data.get("vendor_name", ""),
        )


class CartStore(Protocol):
    def load(self) -> List[CartItem]: ...

    def save(self, items: List[CartItem]) -> None: ...


class MemoryCartStore:
    def __init__(self, items: Optional[List[CartItem]] = None) -> None:
        self._items = list(items or [])
        self.saves = 0

    def load(self) -> List[CartItem]:
        return list(self._items)

    def save(self, items: List[CartItem]) -> None:
        self._items = list(items)
        self.saves += 1


class JsonFileCartStore:
    """Keeps one user's cart in a JSON file so it survives restarts."""

    def __init__(self, path: str) -> None:
        self.path = path

    @classmethod
    def for_user(cls, cart_dir: str, uid: int) -> "JsonFileCartStore":
        return cls(os.path.join(cart_dir, f"cart-{uid}.json"))

    def load(self) -> List[CartItem]:
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            # a corrupt file should not lock the user out of the app
            _logger.warning(f"Discarding unreadable cart file {self.path}: {e}")
            return []
        if not isinstance(raw, list):
            _logger.warning(f"Discarding malformed cart file {self.path}")
            return []

        items = []
        for entry in raw:
            try:
                items.append(CartItem.from_json(entry))
            except (ValueError, ArithmeticError, KeyError, TypeError) as e:
                _logger.warning(f"Dropping bad cart line in {self.path}: {e!r}")
        return items

    def save(self, items: List[CartItem]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = self.path + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump([item.to_json() for item in items], f, ensure_ascii=False)
        os.replace(tmp_path, self.path)


class Cart:
    def __init__(self, store: Optional[CartStore] = None) -> None:
        self._store = store if store is not None else MemoryCartStore()
        self._items: List[CartItem] = self._store.load()

    @property
    def items(self) -> Tuple[CartItem, ...]:
        return tuple(self._items)

    @property
    def is_empty(self) -> bool:
        return not self._items

    @property
    def total(self) -> Decimal:
        return sum((i.line_total for i in self._items), Decimal("0")).quantize(CENT)

    @property
    def count(self) -> int:
        return sum(i.qty for i in self._items)

    def get(self, pid: int) -> Optional[CartItem]:
        return next((i for i in self._items if i.pid == pid), None)

    def add(self, item: CartItem) -> CartItem:
        """Add an item; adding a product already in the cart bumps its quantity."""
        _check_qty(item.qty)
        item = replace(item, price=parse_money(item.price, "price"))
        existing = self.get(item.pid)
        if existing:
            merged = replace(existing, qty=existing.qty + item.qty)
            self._items = [merged if i.pid == item.pid else i for i in self._items]
            result = merged
        else:
            self._items.append(item)
            result = item
        self._persist()
        return result

    def remove(self, pid: int) -> None:
        if not self.get(pid):
            raise NotFoundError("Item is not in the cart.")
        self._items = [i for i in self._items if i.pid != pid]
        self._persist()

    def set_quantity(self, pid: int, qty: int) -> None:
        """Set the quantity of an item; zero or less removes it."""
        if isinstance(qty, bool) or not isinstance(qty, int):
            raise ValidationError("Quantity must be an integer.")
        if qty <= 0:
            self.remove(pid)
            return
        existing = self.get(pid)
        if not existing:
            raise NotFoundError("Item is not in the cart.")
        self._items = [replace(i, qty=qty) if i.pid == pid else i for i in self._items]
        self._persist()

    def clear(self) -> None:
        self._items = []
        self._persist()

    def vendor_groups(self) -> Dict[Tuple[int, Optional[int]], List[CartItem]]:
        """Items keyed by (vid, mid), in the order stalls were first added."""
        groups: Dict[Tuple[int, Optional[int]], List[CartItem]] = {}
        for item in self._items:
            groups.setdefault((item.vid, item.mid), []).append(item)
        return groups

    def _persist(self) -> None:
        self._store.save(list(self._items))
