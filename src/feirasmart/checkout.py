"""
Turns a cart into orders: one order per (stall, market) pair.

The per-stall orders are independent, so they are submitted concurrently.
Checkout only succeeds when every one of them does. Otherwise the cart is
kept so the customer can retry, and the error says which stalls went
through so nothing is ordered twice. Orders that did succeed are not undone.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from feirasmart.cart import Cart, CartItem
from feirasmart.db import models, orders
from feirasmart.utils.errors import FeiraError, ValidationError
from feirasmart.utils.logger import get_logger

_logger = get_logger(__name__)

SubmitOrder = Callable[..., Awaitable[models.Order]]


@dataclass(frozen=True)
class OrderRequest:
    vid: int
    mid: int
    items: Tuple[models.OrderItemRequest, ...]
    vendor_name: str = ""


@dataclass(frozen=True)
class GroupOutcome:
    request: OrderRequest
    order: Optional[models.Order] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class CheckoutResult:
    outcomes: Tuple[GroupOutcome, ...]

    @property
    def orders(self) -> List[models.Order]:
        return [o.order for o in self.outcomes if o.order is not None]

    @property
    def order_ids(self) -> List[int]:
        return [o.ono for o in self.orders]


class CheckoutError(FeiraError):
    """At least one stall's order failed. ``outcomes`` has one entry per stall."""

    def __init__(self, outcomes: Sequence[GroupOutcome]):
        self.outcomes = tuple(outcomes)
        failed = len(self.failed)
        super().__init__(
            f"{failed} of {len(self.outcomes)} stall order(s) could not be placed."
        )

    @property
    def succeeded(self) -> List[GroupOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> List[GroupOutcome]:
        return [o for o in self.outcomes if not o.ok]

    @property
    def retryable(self) -> bool:
        return all(getattr(o.error, "retryable", False) for o in self.failed)


def group_cart_items(items: Sequence[CartItem]) -> List[OrderRequest]:
    """
    Split cart items into one request per distinct (vid, mid), first-seen order.

    Raises ValidationError before anything is sent if the cart is empty or any
    item has no market.
    """
    if not items:
        raise ValidationError("Cart is empty.")
    if any(item.mid in (None, "") for item in items):
        raise ValidationError("missing market association")

    groups: dict = {}
    names: dict = {}
    for item in items:
        key = (item.vid, item.mid)
        groups.setdefault(key, []).append(
            models.OrderItemRequest(
                pid=item.pid,
                product_name=item.name,
                qty=item.qty,
                uprice=item.price,
            )
        )
        names.setdefault(key, item.vendor_name)

    return [
        OrderRequest(vid=vid, mid=mid, items=tuple(lines), vendor_name=names[(vid, mid)])
        for (vid, mid), lines in groups.items()
    ]


async def checkout(
    cart: Cart,
    identity: models.Identity,
    notes: Optional[str] = None,
    submit: Optional[SubmitOrder] = None,
) -> CheckoutResult:
    """
    Place one order per stall in the cart and clear the cart if all succeed.

    ``submit`` defaults to orders.create_order and is called as
    ``submit(identity, vid, mid, items, notes)``.
    """
    submit = submit or orders.create_order
    requests = group_cart_items(cart.items)

    _logger.info(
        f"Checkout for uid={identity.uid}: {len(requests)} stall order(s)"
    )
    results = await asyncio.gather(
        *(submit(identity, r.vid, r.mid, r.items, notes) for r in requests),
        return_exceptions=True,
    )

    outcomes = []
    for request, result in zip(requests, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                # cancellation and interpreter exits are not order failures
                raise result
            _logger.warning(
                f"Order for vid={request.vid} mid={request.mid} failed: {result!r}"
            )
            outcomes.append(GroupOutcome(request=request, error=result))
        else:
            outcomes.append(GroupOutcome(request=request, order=result))

    if any(not o.ok for o in outcomes):
        raise CheckoutError(outcomes)

    cart.clear()
    result = CheckoutResult(outcomes=tuple(outcomes))
    _logger.info(f"Checkout complete, orders {result.order_ids}")
    return result
