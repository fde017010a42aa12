# provide dataclass models

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Literal, Optional, Tuple

Role = Literal["cliente", "feirante"]
MarketStatus = Literal["ativa", "agendada", "encerrada"]

ROLES = ("cliente", "feirante")
MARKET_STATUSES = ("ativa", "agendada", "encerrada")


class OrderStatus(str, Enum):
    PENDENTE = "pendente"
    CONFIRMADO = "confirmado"
    PRONTO = "pronto"
    ENTREGUE = "entregue"
    CANCELADO = "cancelado"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.ENTREGUE, OrderStatus.CANCELADO)


@dataclass(frozen=True)
class Identity:
    """Who is calling: resolved from a bearer token."""

    uid: int
    role: Role


@dataclass(frozen=True)
class User:
    uid: int
    email: str
    name: str
    role: Role
    phone: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class Market:
    mid: int
    name: str
    location: str
    descr: Optional[str]
    weekday: Optional[int]  # 0 = Monday
    start_date: Optional[str]
    end_date: Optional[str]
    open_time: Optional[str]
    close_time: Optional[str]
    image: Optional[str]
    status: MarketStatus


@dataclass(frozen=True)
class Vendor:
    vid: int
    uid: int
    mid: int
    stall_name: str
    descr: Optional[str]
    category: Optional[str]
    avatar: Optional[str]
    rating: float
    rating_count: int


@dataclass(frozen=True)
class Product:
    pid: int
    vid: int
    name: str
    descr: Optional[str]
    price: Decimal
    unit: str
    category: Optional[str]
    stock_count: int
    available: bool
    image: Optional[str]


@dataclass(frozen=True)
class OrderItem:
    ono: int
    line_no: int
    pid: int
    product_name: str  # snapshot at order time
    qty: int
    uprice: Decimal  # unit price at time of order

    @property
    def line_total(self) -> Decimal:
        return self.uprice * self.qty


@dataclass(frozen=True)
class Order:
    ono: int
    customer_uid: int
    vid: int
    mid: int
    total: Decimal
    status: OrderStatus
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime
    items: Tuple[OrderItem, ...] = field(default=())


@dataclass(frozen=True)
class OrderItemRequest:
    """One line of an order as submitted by the client."""

    pid: int
    product_name: str
    qty: int
    uprice: Decimal
