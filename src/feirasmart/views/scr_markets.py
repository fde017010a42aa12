from typing import Dict, List, Optional

from textual import on, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.events import ScreenResume
from textual.widgets import DataTable, Input, Markdown, Select

from feirasmart.db import crud
from feirasmart.db.models import Market, Product, Vendor
from feirasmart.utils.messages import CartChangedMessage
from feirasmart.utils.pure import format_money
from feirasmart.views.base_screen import BaseScreen
from feirasmart.views.modal_product import ProductModal

WEEKDAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]


def describe_market(market: Market) -> str:
    when = []
    if market.weekday is not None:
        when.append(f"every {WEEKDAYS[market.weekday]}")
    if market.start_date or market.end_date:
        when.append(f"{market.start_date or '?'} to {market.end_date or '?'}")
    if market.open_time and market.close_time:
        when.append(f"{market.open_time}-{market.close_time}")
    return (
        f"### {market.name} ({market.status})\n\n"
        f"{market.location}  \n"
        f"{', '.join(when)}\n\n"
        f"{market.descr or ''}"
    )


class MarketsScreen(BaseScreen):
    """
    Customers pick a market, browse or search its stalls' products and add
    them to the cart.
    """

    BINDINGS = [
        Binding("enter", "noop", "Add to Cart", show=True, key_display="⏎"),
    ]

    def __init__(self) -> None:
        super().__init__()
        self._markets: Dict[int, Market] = {}
        self._vendors: Dict[int, Vendor] = {}
        self._products: Dict[int, Product] = {}

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical():
            with Horizontal(id="hort-market-picker"):
                yield Select([], prompt="Choose a market", id="select-market")
                yield Input(
                    id="input-search", placeholder="Search products in this market..."
                )
            yield Markdown("", id="md-market")
            yield DataTable(id="table-products")

    def on_mount(self) -> None:
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_columns("Product", "Stall", "Price", "Unit", "Stock")
        self.load_markets()

    def action_noop(self) -> None:
        pass

    @on(ScreenResume)
    def handle_resume(self) -> None:
        self.load_products()

    @work(exclusive=True, group="markets")
    async def load_markets(self) -> None:
        markets = await crud.list_markets()
        self._markets = {m.mid: m for m in markets}
        select = self.query_one("#select-market", Select)
        select.set_options([(f"{m.name} ({m.status})", m.mid) for m in markets])
        if markets:
            select.value = markets[0].mid

    def _selected_mid(self) -> Optional[int]:
        value = self.query_one("#select-market", Select).value
        return value if isinstance(value, int) else None

    @on(Select.Changed, "#select-market")
    async def handle_market_changed(self) -> None:
        mid = self._selected_mid()
        if mid is None:
            return
        await self.query_one("#md-market", Markdown).update(
            describe_market(self._markets[mid])
        )
        self.load_products()

    @on(Input.Changed, "#input-search")
    def handle_search(self) -> None:
        self.load_products()

    @work(exclusive=True, group="products")
    async def load_products(self) -> None:
        mid = self._selected_mid()
        table = self.query_one(DataTable)
        table.clear()
        if mid is None:
            return
        query = self.query_one("#input-search", Input).value
        vendors: List[Vendor] = await crud.list_vendors(mid=mid)
        products = await crud.search_products(query, mid=mid)
        self._vendors = {v.vid: v for v in vendors}
        self._products = {p.pid: p for p in products}
        for p in products:
            vendor = self._vendors.get(p.vid)
            table.add_row(
                p.name,
                vendor.stall_name if vendor else "-",
                format_money(p.price),
                p.unit,
                p.stock_count,
                key=str(p.pid),
            )

    @on(DataTable.RowSelected, "#table-products")
    @work
    async def handle_product_selected(self, event: DataTable.RowSelected) -> None:
        product = self._products.get(int(event.row_key.value))
        mid = self._selected_mid()
        if product is None or mid is None:
            return
        vendor = self._vendors.get(product.vid)
        if await self.app.push_screen_wait(
            ProductModal(product, vendor, self._markets[mid])
        ):
            self.app.post_message(CartChangedMessage())
