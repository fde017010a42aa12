# src/feirasmart/db/orders.py
# order (pedido) workflow: creation, role-scoped reads, status transitions
from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

import aiosqlite

from feirasmart.db import models
from feirasmart.db.crud import _to_int, require_role
from feirasmart.db.database import connect, now_iso, transaction
from feirasmart.db.models import OrderStatus
from feirasmart.utils.errors import (
    AccessDeniedError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from feirasmart.utils.logger import get_logger
from feirasmart.utils.pure import CENT, parse_money

_logger = get_logger(__name__)

_ORDER_COLS = (
    "o.ono, o.customer_uid, o.vid, o.mid, o.total, o.status, o.notes, "
    "o.created_at, o.updated_at"
)

# the fulfilment sequence; cancelado hangs off every non-terminal step
_FLOW = (
    OrderStatus.PENDENTE,
    OrderStatus.CONFIRMADO,
    OrderStatus.PRONTO,
    OrderStatus.ENTREGUE,
)


def allowed_transitions(current: OrderStatus) -> Tuple[OrderStatus, ...]:
    """
    Statuses an order in ``current`` may move to.

    Moves go forward along pendente -> confirmado -> pronto -> entregue and
    may skip steps; cancelado is reachable from any non-terminal status;
    entregue and cancelado accept nothing.
    """
    current = OrderStatus(current)
    if current.is_terminal:
        return ()
    idx = _FLOW.index(current)
    return _FLOW[idx + 1 :] + (OrderStatus.CANCELADO,)


def parse_status(value) -> OrderStatus:
    try:
        return OrderStatus(str(value).strip().lower())
    except ValueError:
        raise ValidationError(f"Unknown order status '{value}'.") from None


def order_total(items: Sequence[models.OrderItemRequest]) -> Decimal:
    """Sum of uprice * qty in Decimal, so there is no float drift."""
    return sum((item.uprice * item.qty for item in items), Decimal("0")).quantize(
        CENT
    )


def _check_item(item: models.OrderItemRequest) -> models.OrderItemRequest:
    pid = _to_int(item.pid)
    if pid is None:
        raise ValidationError("Every item needs a product.")
    if isinstance(item.qty, bool) or not isinstance(item.qty, int) or item.qty <= 0:
        raise ValidationError("Quantity must be a positive integer.")
    uprice = parse_money(item.uprice, "unit price")
    return models.OrderItemRequest(
        pid=pid,
        product_name=(item.product_name or "").strip(),
        qty=item.qty,
        uprice=uprice,
    )


def _row_to_order(row, items: Tuple[models.OrderItem, ...] = ()) -> models.Order:
    return models.Order(
        ono=int(row["ono"]),
        customer_uid=int(row["customer_uid"]),
        vid=int(row["vid"]),
        mid=int(row["mid"]),
        total=Decimal(row["total"]),
        status=OrderStatus(row["status"]),
        notes=row["notes"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        items=items,
    )


async def _fetch_items(
    conn: aiosqlite.Connection, ono: int
) -> Tuple[models.OrderItem, ...]:
    cur = await conn.execute(
        """
        SELECT ono, line_no, pid, product_name, qty, uprice
        FROM order_items
        WHERE ono = ?
        ORDER BY line_no;
        """,
        (ono,),
    )
    rows = await cur.fetchall()
    await cur.close()
    return tuple(
        models.OrderItem(
            ono=int(row["ono"]),
            line_no=int(row["line_no"]),
            pid=int(row["pid"]),
            product_name=row["product_name"],
            qty=int(row["qty"]),
            uprice=Decimal(row["uprice"]),
        )
        for row in rows
    )


def _visibility(identity: models.Identity) -> Tuple[str, str]:
    """(join, where) that limits orders to what the caller may see."""
    if identity is None:
        raise AccessDeniedError("Sign in to see orders.")
    if identity.role == "cliente":
        return "", "o.customer_uid = ?"
    if identity.role == "feirante":
        return "JOIN vendors v ON v.vid = o.vid", "v.uid = ?"
    raise AccessDeniedError("This account cannot see orders.")


# ---------------------------
# Creation
# ---------------------------


async def _insert_order_item(
    conn: aiosqlite.Connection,
    ono: int,
    line_no: int,
    item: models.OrderItemRequest,
    vid: int,
    created_at: str,
) -> None:
    """
    Write one line and take its quantity out of stock.

    The product must belong to the order's stall and be available. The
    decrement is conditional, so two orders racing for the last units cannot
    both succeed.
    """
    cur = await conn.execute(
        "SELECT vid, name, available FROM products WHERE pid = ?;", (item.pid,)
    )
    prod = await cur.fetchone()
    await cur.close()
    if not prod:
        raise NotFoundError(f"Product {item.pid} not found.")
    if int(prod["vid"]) != vid:
        raise ValidationError(f"Product {item.pid} is not sold by this stall.")
    if not prod["available"]:
        raise ValidationError(f"{prod['name']} is not available.")

    cur = await conn.execute(
        """
        UPDATE products
        SET stock_count = stock_count - ?
        WHERE pid = ? AND stock_count >= ?;
        """,
        (item.qty, item.pid, item.qty),
    )
    taken = cur.rowcount
    await cur.close()
    if not taken:
        raise ValidationError(f"Not enough stock for {prod['name']}.")

    await conn.execute(
        """
        INSERT INTO order_items(ono, line_no, pid, product_name, qty, uprice, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?);
        """,
        (
            ono,
            line_no,
            item.pid,
            item.product_name or prod["name"],
            item.qty,
            str(item.uprice),
            created_at,
        ),
    )


async def create_order(
    identity: models.Identity,
    vid: int,
    mid: int,
    items: Sequence[models.OrderItemRequest],
    notes: Optional[str] = None,
) -> models.Order:
    """
    Persist one stall's order and its lines atomically.

    Names and prices are the snapshots the customer saw in the cart; the
    stall, market and product ownership are re-checked here. Either the order,
    all its lines and the stock decrements are committed, or nothing is.
    """
    require_role(identity, "cliente", "place orders")
    vid, mid = _to_int(vid), _to_int(mid)
    if vid is None or mid is None:
        raise ValidationError("Stall and market are required.")
    if not items:
        raise ValidationError("Order must have at least one item.")
    lines = [_check_item(item) for item in items]
    total = order_total(lines)
    now = now_iso()

    async with transaction() as conn:
        cur = await conn.execute("SELECT mid FROM vendors WHERE vid = ?;", (vid,))
        vendor = await cur.fetchone()
        await cur.close()
        if not vendor:
            raise NotFoundError("Stall not found.")
        if int(vendor["mid"]) != mid:
            raise ValidationError("Stall is not part of this market.")

        cur = await conn.execute(
            """
            INSERT INTO orders(customer_uid, vid, mid, total, status, notes, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                identity.uid,
                vid,
                mid,
                str(total),
                OrderStatus.PENDENTE.value,
                (notes or "").strip() or None,
                now,
                now,
            ),
        )
        ono = cur.lastrowid
        await cur.close()
        for line_no, line in enumerate(lines, start=1):
            await _insert_order_item(conn, ono, line_no, line, vid, now)

    _logger.info(
        f"Order ono={ono} placed by uid={identity.uid} for vid={vid}: "
        f"{len(lines)} item(s), total {total}"
    )
    return await get_order(identity, ono)


# ---------------------------
# Reads
# ---------------------------


async def list_orders(
    identity: models.Identity, status: Optional[str] = None
) -> List[models.Order]:
    """
    Orders the caller may see, newest first.
    Customers get their own orders; vendors get orders placed at any of their
    stalls. Line items are not loaded; use get_order for those.
    """
    join, where = _visibility(identity)
    params: list = [identity.uid]
    if status is not None:
        where += " AND o.status = ?"
        params.append(parse_status(status).value)
    async with connect() as conn:
        cur = await conn.execute(
            f"""
            SELECT {_ORDER_COLS}
            FROM orders o {join}
            WHERE {where}
            ORDER BY o.created_at DESC, o.ono DESC;
            """,
            tuple(params),
        )
        rows = await cur.fetchall()
        await cur.close()
    return [_row_to_order(row) for row in rows]


async def get_order(identity: models.Identity, ono: int) -> models.Order:
    """Order plus lines. Someone else's order looks exactly like a missing one."""
    join, where = _visibility(identity)
    async with connect() as conn:
        cur = await conn.execute(
            f"""
            SELECT {_ORDER_COLS}
            FROM orders o {join}
            WHERE o.ono = ? AND {where};
            """,
            (ono, identity.uid),
        )
        row = await cur.fetchone()
        await cur.close()
        if not row:
            raise NotFoundError("Order not found.")
        items = await _fetch_items(conn, int(row["ono"]))
    return _row_to_order(row, items)


# ---------------------------
# Status transitions
# ---------------------------


async def update_order_status(
    identity: models.Identity, ono: int, status
) -> models.Order:
    """
    Move an order to ``status``. Only the user owning the order's stall may do
    this; for anyone else the order does not exist. Cancelling puts the
    ordered quantities back into stock.
    """
    require_role(identity, "feirante", "update order status")
    new_status = parse_status(status)

    async with transaction() as conn:
        cur = await conn.execute(
            """
            SELECT o.status
            FROM orders o
            JOIN vendors v ON v.vid = o.vid
            WHERE o.ono = ? AND v.uid = ?;
            """,
            (ono, identity.uid),
        )
        row = await cur.fetchone()
        await cur.close()
        if not row:
            _logger.warning(f"uid={identity.uid} tried to update hidden order {ono}")
            raise NotFoundError("Order not found.")

        current = OrderStatus(row["status"])
        if new_status not in allowed_transitions(current):
            raise ConflictError(
                f"Cannot change an order from {current.value} to {new_status.value}."
            )

        await conn.execute(
            "UPDATE orders SET status = ?, updated_at = ? WHERE ono = ?;",
            (new_status.value, now_iso(), ono),
        )
        if new_status is OrderStatus.CANCELADO:
            # products deleted since the order was placed are skipped
            await conn.execute(
                """
                UPDATE products
                SET stock_count = stock_count + (
                    SELECT SUM(i.qty) FROM order_items i
                    WHERE i.ono = ? AND i.pid = products.pid
                )
                WHERE pid IN (SELECT pid FROM order_items WHERE ono = ?);
                """,
                (ono, ono),
            )

    _logger.info(f"Order ono={ono}: {current.value} -> {new_status.value}")
    return await get_order(identity, ono)


# ---------------------------
# Vendor dashboard
# ---------------------------


def _day_bounds(start: date, end_exclusive: date) -> Tuple[str, str]:
    return start.isoformat(), end_exclusive.isoformat()


async def _revenue(
    conn: aiosqlite.Connection, uid: int, start: date, end_exclusive: date
) -> Tuple[int, Decimal]:
    lo, hi = _day_bounds(start, end_exclusive)
    cur = await conn.execute(
        """
        SELECT o.total, o.status
        FROM orders o
        JOIN vendors v ON v.vid = o.vid
        WHERE v.uid = ? AND o.created_at >= ? AND o.created_at < ?;
        """,
        (uid, lo, hi),
    )
    rows = await cur.fetchall()
    await cur.close()
    revenue = sum(
        (
            Decimal(r["total"])
            for r in rows
            if r["status"] != OrderStatus.CANCELADO.value
        ),
        Decimal("0.00"),
    )
    return len(rows), revenue


async def vendor_dashboard_stats(
    identity: models.Identity, today: Optional[date] = None
) -> Dict[str, object]:
    """
    Figures for the vendor's home screen:
    active products, orders placed today, today's revenue (cancelled orders
    excluded) and revenue growth of this week so far against last week, in %.
    """
    require_role(identity, "feirante", "see the stall dashboard")
    today = today or date.today()
    week_start = today - timedelta(days=today.weekday())
    last_week_start = week_start - timedelta(days=7)

    async with connect() as conn:
        cur = await conn.execute(
            """
            SELECT COUNT(*)
            FROM products p
            JOIN vendors v ON v.vid = p.vid
            WHERE v.uid = ? AND p.available = 1;
            """,
            (identity.uid,),
        )
        active_products = int((await cur.fetchone())[0] or 0)
        await cur.close()

        tomorrow = today + timedelta(days=1)
        orders_today, revenue_today = await _revenue(
            conn, identity.uid, today, tomorrow
        )
        _, this_week = await _revenue(conn, identity.uid, week_start, tomorrow)
        _, last_week = await _revenue(conn, identity.uid, last_week_start, week_start)

    if last_week > 0:
        growth = float((this_week - last_week) / last_week * 100)
    elif this_week > 0:
        growth = 100.0
    else:
        growth = 0.0

    return {
        "active_products": active_products,
        "orders_today": orders_today,
        "revenue_today": revenue_today,
        "growth_pct": round(growth, 1),
    }
