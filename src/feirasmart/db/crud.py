# src/feirasmart/db/crud.py
from __future__ import annotations

import sqlite3
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from feirasmart.db import models
from feirasmart.db.database import connect, now_iso
from feirasmart.utils.errors import (
    AccessDeniedError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from feirasmart.utils.logger import get_logger
from feirasmart.utils.pure import parse_money

_logger = get_logger(__name__)

_USER_COLS = "uid, email, name, role, phone, created_at"
_MARKET_COLS = (
    "mid, name, location, descr, weekday, start_date, end_date, "
    "open_time, close_time, image, status"
)
_VENDOR_COLS = (
    "vid, uid, mid, stall_name, descr, category, avatar, rating, rating_count"
)
_PRODUCT_COLS = (
    "pid, vid, name, descr, price, unit, category, stock_count, available, image"
)


def _to_int(val) -> Optional[int]:
    try:
        return int(val)
    except (TypeError, ValueError):
        return None


def _required(value, field: str) -> str:
    text = value.strip() if isinstance(value, str) else value
    if not text:
        raise ValidationError(f"{field} is required.")
    return text


def require_role(identity: models.Identity, role: str, action: str) -> None:
    """Raise AccessDeniedError unless the caller has the given role."""
    if identity is None or identity.role != role:
        _logger.warning(
            f"Denied '{action}' for {getattr(identity, 'role', None)} "
            f"uid={getattr(identity, 'uid', None)}"
        )
        raise AccessDeniedError(f"Only {role} accounts can {action}.")


def _row_to_user(row) -> models.User:
    return models.User(
        uid=int(row["uid"]),
        email=row["email"],
        name=row["name"],
        role=row["role"],
        phone=row["phone"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


def _row_to_market(row) -> models.Market:
    return models.Market(
        mid=int(row["mid"]),
        name=row["name"],
        location=row["location"],
        descr=row["descr"],
        weekday=row["weekday"],
        start_date=row["start_date"],
        end_date=row["end_date"],
        open_time=row["open_time"],
        close_time=row["close_time"],
        image=row["image"],
        status=row["status"],
    )


def _row_to_vendor(row) -> models.Vendor:
    return models.Vendor(
        vid=int(row["vid"]),
        uid=int(row["uid"]),
        mid=int(row["mid"]),
        stall_name=row["stall_name"],
        descr=row["descr"],
        category=row["category"],
        avatar=row["avatar"],
        rating=float(row["rating"]),
        rating_count=int(row["rating_count"]),
    )


def _row_to_product(row) -> models.Product:
    return models.Product(
        pid=int(row["pid"]),
        vid=int(row["vid"]),
        name=row["name"],
        descr=row["descr"],
        price=Decimal(row["price"]),
        unit=row["unit"],
        category=row["category"],
        stock_count=int(row["stock_count"]),
        available=bool(row["available"]),
        image=row["image"],
    )


# ---------------------------
# Users
# ---------------------------


async def email_available(email: str) -> bool:
    """True if no user already registered with the given email."""
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT 1 FROM users WHERE email = ? LIMIT 1;",
            ((email or "").strip().lower(),),
        )
        row = await cur.fetchone()
        await cur.close()
        return row is None


async def create_user(
    email: str,
    name: str,
    role: str,
    password_hash: str,
    phone: Optional[str] = None,
) -> models.User:
    """Insert a user row. The role is fixed for the lifetime of the account."""
    email = _required(email, "email").lower()
    name = _required(name, "name")
    if role not in models.ROLES:
        raise ValidationError(f"Unknown role '{role}'.")
    now = now_iso()
    async with connect() as conn:
        try:
            cur = await conn.execute(
                """
                INSERT INTO users(email, name, role, phone, password_hash, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (email, name, role, phone or None, password_hash, now, now),
            )
        except sqlite3.IntegrityError as e:
            raise ConflictError("Email already registered.") from e
        uid = cur.lastrowid
        await cur.close()
        await conn.commit()
    _logger.info(f"Registered {role} uid={uid}")
    return models.User(
        uid=uid,
        email=email,
        name=name,
        role=role,
        phone=phone or None,
        created_at=datetime.fromisoformat(now),
    )


async def get_user(uid: int) -> Optional[models.User]:
    """Return a User for the given uid, or None if not found."""
    async with connect() as conn:
        cur = await conn.execute(
            f"SELECT {_USER_COLS} FROM users WHERE uid = ?;", (uid,)
        )
        row = await cur.fetchone()
        await cur.close()
    return _row_to_user(row) if row else None


async def get_user_by_email(email: str) -> Optional[models.User]:
    found = await get_credentials(email)
    return found[0] if found else None


async def get_credentials(email: str) -> Optional[Tuple[models.User, str]]:
    """Return (user, password_hash) for login checks, or None."""
    async with connect() as conn:
        cur = await conn.execute(
            f"SELECT {_USER_COLS}, password_hash FROM users WHERE email = ?;",
            ((email or "").strip().lower(),),
        )
        row = await cur.fetchone()
        await cur.close()
    if not row:
        return None
    return _row_to_user(row), row["password_hash"]


# ---------------------------
# Markets (feiras)
# ---------------------------


def _check_market_fields(weekday: Optional[int], status: Optional[str]) -> None:
    if weekday is not None:
        day = None if isinstance(weekday, bool) else _to_int(weekday)
        if day is None or not 0 <= day <= 6:
            raise ValidationError("weekday must be between 0 (Monday) and 6 (Sunday).")
    if status is not None and status not in models.MARKET_STATUSES:
        raise ValidationError(f"Unknown market status '{status}'.")


async def create_market(
    name: str,
    location: str,
    descr: Optional[str] = None,
    weekday: Optional[int] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    open_time: Optional[str] = None,
    close_time: Optional[str] = None,
    image: Optional[str] = None,
    status: str = "agendada",
) -> models.Market:
    name = _required(name, "name")
    location = _required(location, "location")
    _check_market_fields(weekday, status)
    now = now_iso()
    async with connect() as conn:
        cur = await conn.execute(
            """
            INSERT INTO markets(name, location, descr, weekday, start_date, end_date,
                                open_time, close_time, image, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                name,
                location,
                descr,
                weekday,
                start_date,
                end_date,
                open_time,
                close_time,
                image,
                status,
                now,
                now,
            ),
        )
        mid = cur.lastrowid
        await cur.close()
        await conn.commit()
    _logger.info(f"Created market mid={mid} '{name}'")
    return await get_market(mid)


async def update_market(
    mid: int,
    name: Optional[str] = None,
    location: Optional[str] = None,
    descr: Optional[str] = None,
    weekday: Optional[int] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    open_time: Optional[str] = None,
    close_time: Optional[str] = None,
    image: Optional[str] = None,
    status: Optional[str] = None,
) -> models.Market:
    """Partial update: fields left as None keep their current value."""
    _check_market_fields(weekday, status)
    async with connect() as conn:
        cur = await conn.execute(
            """
            UPDATE markets
            SET name = COALESCE(?, name),
                location = COALESCE(?, location),
                descr = COALESCE(?, descr),
                weekday = COALESCE(?, weekday),
                start_date = COALESCE(?, start_date),
                end_date = COALESCE(?, end_date),
                open_time = COALESCE(?, open_time),
                close_time = COALESCE(?, close_time),
                image = COALESCE(?, image),
                status = COALESCE(?, status),
                updated_at = ?
            WHERE mid = ?;
            """,
            (
                name,
                location,
                descr,
                weekday,
                start_date,
                end_date,
                open_time,
                close_time,
                image,
                status,
                now_iso(),
                mid,
            ),
        )
        updated = cur.rowcount
        await cur.close()
        await conn.commit()
    if not updated:
        raise NotFoundError("Market not found.")
    return await get_market(mid)


async def delete_market(mid: int) -> None:
    async with connect() as conn:
        try:
            cur = await conn.execute("DELETE FROM markets WHERE mid = ?;", (mid,))
        except sqlite3.IntegrityError as e:
            raise ConflictError("Market has orders and cannot be deleted.") from e
        deleted = cur.rowcount
        await cur.close()
        await conn.commit()
    if not deleted:
        raise NotFoundError("Market not found.")
    _logger.info(f"Deleted market mid={mid}")


async def get_market(mid: int) -> Optional[models.Market]:
    async with connect() as conn:
        cur = await conn.execute(
            f"SELECT {_MARKET_COLS} FROM markets WHERE mid = ?;", (mid,)
        )
        row = await cur.fetchone()
        await cur.close()
    return _row_to_market(row) if row else None


async def list_markets(status: Optional[str] = None) -> List[models.Market]:
    """All markets, latest start date first; optionally only one status."""
    query = f"SELECT {_MARKET_COLS} FROM markets"
    params: tuple = ()
    if status:
        _check_market_fields(None, status)
        query += " WHERE status = ?"
        params = (status,)
    query += " ORDER BY start_date DESC, created_at DESC, mid DESC;"
    async with connect() as conn:
        cur = await conn.execute(query, params)
        rows = await cur.fetchall()
        await cur.close()
    return [_row_to_market(row) for row in rows]


# ---------------------------
# Vendors (feirantes / estandes)
# ---------------------------


async def register_vendor(
    identity: models.Identity,
    mid: int,
    stall_name: str,
    category: Optional[str] = None,
    descr: Optional[str] = None,
    avatar: Optional[str] = None,
) -> models.Vendor:
    """
    Register the caller's stall at a market.

    A user can hold at most one stall per market. The lookup gives a friendly
    error; the UNIQUE(uid, mid) index catches concurrent duplicates.
    """
    require_role(identity, "feirante", "register a stall")
    if _to_int(mid) is None:
        raise ValidationError("Market is required.")
    stall_name = _required(stall_name, "Stall name")
    now = now_iso()
    async with connect() as conn:
        cur = await conn.execute("SELECT 1 FROM markets WHERE mid = ?;", (mid,))
        market_exists = await cur.fetchone()
        await cur.close()
        if not market_exists:
            raise NotFoundError("Market not found.")

        cur = await conn.execute(
            "SELECT vid FROM vendors WHERE uid = ? AND mid = ?;",
            (identity.uid, mid),
        )
        existing = await cur.fetchone()
        await cur.close()
        if existing:
            _logger.warning(
                f"Duplicate stall registration uid={identity.uid} mid={mid}"
            )
            raise ConflictError("Already registered at this market.")

        try:
            cur = await conn.execute(
                """
                INSERT INTO vendors(uid, mid, stall_name, descr, category, avatar, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (identity.uid, mid, stall_name, descr, category, avatar, now, now),
            )
        except sqlite3.IntegrityError as e:
            raise ConflictError("Already registered at this market.") from e
        vid = cur.lastrowid
        await cur.close()
        await conn.commit()
    _logger.info(f"Registered stall vid={vid} uid={identity.uid} mid={mid}")
    return await get_vendor(vid)


async def update_vendor(
    identity: models.Identity,
    vid: int,
    stall_name: Optional[str] = None,
    descr: Optional[str] = None,
    category: Optional[str] = None,
    avatar: Optional[str] = None,
) -> models.Vendor:
    """Only the owning user may update; anyone else gets NotFoundError."""
    async with connect() as conn:
        cur = await conn.execute(
            """
            UPDATE vendors
            SET stall_name = COALESCE(?, stall_name),
                descr = COALESCE(?, descr),
                category = COALESCE(?, category),
                avatar = COALESCE(?, avatar),
                updated_at = ?
            WHERE vid = ? AND uid = ?;
            """,
            (stall_name or None, descr, category, avatar, now_iso(), vid, identity.uid),
        )
        updated = cur.rowcount
        await cur.close()
        await conn.commit()
    if not updated:
        raise NotFoundError("Stall not found.")
    return await get_vendor(vid)


async def delete_vendor(identity: models.Identity, vid: int) -> None:
    async with connect() as conn:
        try:
            cur = await conn.execute(
                "DELETE FROM vendors WHERE vid = ? AND uid = ?;", (vid, identity.uid)
            )
        except sqlite3.IntegrityError as e:
            raise ConflictError("Stall has orders and cannot be deleted.") from e
        deleted = cur.rowcount
        await cur.close()
        await conn.commit()
    if not deleted:
        raise NotFoundError("Stall not found.")
    _logger.info(f"Deleted stall vid={vid}")


async def get_vendor(vid: int) -> Optional[models.Vendor]:
    async with connect() as conn:
        cur = await conn.execute(
            f"SELECT {_VENDOR_COLS} FROM vendors WHERE vid = ?;", (vid,)
        )
        row = await cur.fetchone()
        await cur.close()
    return _row_to_vendor(row) if row else None


async def list_vendors(
    mid: Optional[int] = None, uid: Optional[int] = None
) -> List[models.Vendor]:
    """Stalls, newest first, filtered by market and/or owning user."""
    query = f"SELECT {_VENDOR_COLS} FROM vendors WHERE 1=1"
    params: list = []
    if mid is not None:
        query += " AND mid = ?"
        params.append(mid)
    if uid is not None:
        query += " AND uid = ?"
        params.append(uid)
    query += " ORDER BY created_at DESC, vid DESC;"
    async with connect() as conn:
        cur = await conn.execute(query, tuple(params))
        rows = await cur.fetchall()
        await cur.close()
    return [_row_to_vendor(row) for row in rows]


async def find_vendors_by_user(uid: int) -> List[models.Vendor]:
    return await list_vendors(uid=uid)


async def find_vendor_owner(vid: int) -> Optional[int]:
    """uid of the user owning the stall, or None."""
    async with connect() as conn:
        cur = await conn.execute("SELECT uid FROM vendors WHERE vid = ?;", (vid,))
        row = await cur.fetchone()
        await cur.close()
    return int(row[0]) if row else None


# ---------------------------
# Products
# ---------------------------


def _check_stock(stock_count) -> int:
    stock = _to_int(stock_count)
    if stock is None or isinstance(stock_count, bool) or stock < 0:
        raise ValidationError("Stock must be a non-negative integer.")
    return stock


async def create_product(
    identity: models.Identity,
    vid: int,
    name: str,
    price,
    unit: str,
    descr: Optional[str] = None,
    category: Optional[str] = None,
    stock_count: int = 0,
    available: bool = True,
    image: Optional[str] = None,
) -> models.Product:
    require_role(identity, "feirante", "create products")
    name = _required(name, "name")
    unit = _required(unit, "unit")
    price = parse_money(price, "price", allow_zero=False)
    stock = _check_stock(stock_count)
    now = now_iso()
    async with connect() as conn:
        cur = await conn.execute(
            "SELECT 1 FROM vendors WHERE vid = ? AND uid = ?;", (vid, identity.uid)
        )
        owned = await cur.fetchone()
        await cur.close()
        if not owned:
            raise NotFoundError("Stall not found.")
        cur = await conn.execute(
            """
            INSERT INTO products(vid, name, descr, price, unit, category, stock_count,
                                 available, image, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            (
                vid,
                name,
                descr,
                str(price),
                unit,
                category,
                stock,
                int(bool(available)),
                image,
                now,
                now,
            ),
        )
        pid = cur.lastrowid
        await cur.close()
        await conn.commit()
    _logger.info(f"Created product pid={pid} for vid={vid}")
    return await get_product(pid)


async def update_product(
    identity: models.Identity,
    pid: int,
    name: Optional[str] = None,
    price=None,
    unit: Optional[str] = None,
    descr: Optional[str] = None,
    category: Optional[str] = None,
    stock_count: Optional[int] = None,
    available: Optional[bool] = None,
    image: Optional[str] = None,
) -> models.Product:
    """Partial update by the stall owner; fields left as None are kept."""
    require_role(identity, "feirante", "update products")
    price_text = str(parse_money(price, "price", False)) if price is not None else None
    stock = _check_stock(stock_count) if stock_count is not None else None
    avail = int(bool(available)) if available is not None else None
    async with connect() as conn:
        cur = await conn.execute(
            """
            UPDATE products
            SET name = COALESCE(?, name),
                price = COALESCE(?, price),
                unit = COALESCE(?, unit),
                descr = COALESCE(?, descr),
                category = COALESCE(?, category),
                stock_count = COALESCE(?, stock_count),
                available = COALESCE(?, available),
                image = COALESCE(?, image),
                updated_at = ?
            WHERE pid = ?
              AND vid IN (SELECT vid FROM vendors WHERE uid = ?);
            """,
            (
                name or None,
                price_text,
                unit or None,
                descr,
                category,
                stock,
                avail,
                image,
                now_iso(),
                pid,
                identity.uid,
            ),
        )
        updated = cur.rowcount
        await cur.close()
        await conn.commit()
    if not updated:
        raise NotFoundError("Product not found.")
    return await get_product(pid)


async def delete_product(identity: models.Identity, pid: int) -> None:
    require_role(identity, "feirante", "delete products")
    async with connect() as conn:
        cur = await conn.execute(
            """
            DELETE FROM products
            WHERE pid = ?
              AND vid IN (SELECT vid FROM vendors WHERE uid = ?);
            """,
            (pid, identity.uid),
        )
        deleted = cur.rowcount
        await cur.close()
        await conn.commit()
    if not deleted:
        raise NotFoundError("Product not found.")
    _logger.info(f"Deleted product pid={pid}")


async def get_product(pid: int) -> Optional[models.Product]:
    """Fetch a product by pid."""
    async with connect() as conn:
        cur = await conn.execute(
            f"SELECT {_PRODUCT_COLS} FROM products WHERE pid = ?;", (pid,)
        )
        row = await cur.fetchone()
        await cur.close()
    return _row_to_product(row) if row else None


async def list_products(
    vid: Optional[int] = None, available: Optional[bool] = None
) -> List[models.Product]:
    query = f"SELECT {_PRODUCT_COLS} FROM products WHERE 1=1"
    params: list = []
    if vid is not None:
        query += " AND vid = ?"
        params.append(vid)
    if available is not None:
        query += " AND available = ?"
        params.append(int(bool(available)))
    query += " ORDER BY created_at DESC, pid DESC;"
    async with connect() as conn:
        cur = await conn.execute(query, tuple(params))
        rows = await cur.fetchall()
        await cur.close()
    return [_row_to_product(row) for row in rows]


async def search_products(
    query: str, mid: Optional[int] = None, available_only: bool = True
) -> List[models.Product]:
    """
    Case-insensitive product search for the market browser.
    Rules:
    - Empty string: every product (in the market, if given) ordered by name.
    - Otherwise the whole phrase is matched against name, descr and category
      first; for multi-word queries each word is tried next. Phrase matches
      come first and no product is listed twice.
    """
    phrase = (query or "").strip().lower()
    scope = "WHERE 1=1"
    scope_params: list = []
    if mid is not None:
        scope += " AND vid IN (SELECT vid FROM vendors WHERE mid = ?)"
        scope_params.append(mid)
    if available_only:
        scope += " AND available = 1"
    match = (
        " AND (lower(name) LIKE ? OR lower(COALESCE(descr, '')) LIKE ?"
        " OR lower(COALESCE(category, '')) LIKE ?)"
    )

    results: List[models.Product] = []
    seen: set = set()

    async with connect() as conn:

        async def run(extra: str, extra_params: list) -> None:
            cur = await conn.execute(
                f"SELECT {_PRODUCT_COLS} FROM products {scope}{extra} ORDER BY name, pid;",
                tuple(scope_params + extra_params),
            )
            rows = await cur.fetchall()
            await cur.close()
            for row in rows:
                if row["pid"] in seen:
                    continue
                seen.add(row["pid"])
                results.append(_row_to_product(row))

        if not phrase:
            await run("", [])
            return results

        like = f"%{phrase}%"
        await run(match, [like, like, like])
        words = phrase.split()
        if len(words) > 1:
            for word in words:
                like = f"%{word}%"
                await run(match, [like, like, like])
    return results
