from __future__ import annotations

from typing import Dict, Optional

from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.events import ScreenResume
from textual.validation import Number
from textual.widgets import Button, DataTable, Input, Label, Markdown, Select

from feirasmart.db import crud, orders
from feirasmart.db.models import Product, Vendor
from feirasmart.utils.errors import FeiraError
from feirasmart.utils.pure import format_money
from feirasmart.views.base_screen import BaseScreen
from feirasmart.views.modal_dialog import DialogModal


class StallScreen(BaseScreen):
    """
    Vendor home: dashboard figures, stall registration at a market, and the
    product list of the chosen stall.
    """

    def __init__(self) -> None:
        super().__init__()
        self._stalls: Dict[int, Vendor] = {}
        self._products: Dict[int, Product] = {}

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with VerticalScroll():
            yield Markdown("", id="md-dashboard")

            yield Label("Register a stall", classes="section")
            with Horizontal(id="hort-register"):
                yield Select([], prompt="Market", id="select-reg-market")
                yield Input(placeholder="Stall name", id="input-stall-name")
                yield Input(placeholder="Category", id="input-stall-category")
                yield Button("Register", id="btn-register", variant="primary")

            yield Label("Products", classes="section")
            yield Select([], prompt="Choose one of your stalls", id="select-stall")
            yield DataTable(id="table-stall-products")
            with Horizontal(id="hort-product-actions"):
                yield Button("Toggle availability", id="btn-toggle")
                yield Button("Delete", id="btn-delete", variant="error")

            yield Label("New product", classes="section")
            with Vertical(id="div-new-product"):
                with Horizontal():
                    yield Input(placeholder="Name", id="input-prod-name")
                    yield Input(
                        placeholder="Price (e.g. 8.50)",
                        id="input-prod-price",
                        type="number",
                        validators=[Number(minimum=0.01)],
                    )
                    yield Input(placeholder="Unit (kg, unidade)", id="input-prod-unit")
                with Horizontal():
                    yield Input(placeholder="Category", id="input-prod-category")
                    yield Input(
                        placeholder="Stock",
                        id="input-prod-stock",
                        type="integer",
                        validators=[Number(minimum=0)],
                    )
                    yield Button("Add product", id="btn-add-product", variant="success")

    def on_mount(self) -> None:
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_columns("Product", "Price", "Unit", "Stock", "Available")

    @on(ScreenResume)
    def handle_reload(self) -> None:
        self.load_dashboard()
        self.load_stalls()

    @work(exclusive=True, group="dashboard")
    async def load_dashboard(self) -> None:
        stats = await orders.vendor_dashboard_stats(self.app.state.identity)
        md = (
            "### Today\n\n"
            f"- Active products: {stats['active_products']}\n"
            f"- Orders today: {stats['orders_today']}\n"
            f"- Revenue today: {format_money(stats['revenue_today'])}\n"
            f"- Growth vs last week: {stats['growth_pct']:+.1f}%\n"
        )
        await self.query_one("#md-dashboard", Markdown).update(md)

    @work(exclusive=True, group="stalls")
    async def load_stalls(self) -> None:
        identity = self.app.state.identity
        markets = await crud.list_markets()
        stalls = await crud.find_vendors_by_user(identity.uid)
        self._stalls = {v.vid: v for v in stalls}
        names = {m.mid: m.name for m in markets}

        taken = {v.mid for v in stalls}
        self.query_one("#select-reg-market", Select).set_options(
            [(m.name, m.mid) for m in markets if m.mid not in taken]
        )
        stall_select = self.query_one("#select-stall", Select)
        current = stall_select.value
        stall_select.set_options(
            [(f"{v.stall_name} @ {names.get(v.mid, v.mid)}", v.vid) for v in stalls]
        )
        if current in self._stalls:
            stall_select.value = current
        elif stalls:
            stall_select.value = stalls[0].vid

    def _selected_vid(self) -> Optional[int]:
        value = self.query_one("#select-stall", Select).value
        return value if isinstance(value, int) else None

    def _selected_pid(self) -> Optional[int]:
        table = self.query_one(DataTable)
        if not table.row_count:
            return None
        row_key, _ = table.coordinate_to_cell_key(table.cursor_coordinate)
        return int(row_key.value)

    @on(Select.Changed, "#select-stall")
    def handle_stall_changed(self) -> None:
        self.load_products()

    @work(exclusive=True, group="products")
    async def load_products(self) -> None:
        table = self.query_one(DataTable)
        table.clear()
        vid = self._selected_vid()
        if vid is None:
            return
        products = await crud.list_products(vid=vid)
        self._products = {p.pid: p for p in products}
        for p in products:
            table.add_row(
                p.name,
                format_money(p.price),
                p.unit,
                p.stock_count,
                "yes" if p.available else "no",
                key=str(p.pid),
            )

    @on(Button.Pressed, "#btn-register")
    @work(exclusive=True)
    async def handle_register(self) -> None:
        mid = self.query_one("#select-reg-market", Select).value
        name = self.query_one("#input-stall-name", Input).value
        category = self.query_one("#input-stall-category", Input).value
        if not isinstance(mid, int):
            self.notify("Choose a market first.", severity="warning")
            return
        try:
            vendor = await crud.register_vendor(
                self.app.state.identity, mid, name, category=category or None
            )
        except FeiraError as e:
            self.notify(e.message, severity="error")
            return
        self.notify(f"Stall '{vendor.stall_name}' registered.")
        self.query_one("#input-stall-name", Input).value = ""
        self.load_stalls()

    @on(Button.Pressed, "#btn-add-product")
    @work(exclusive=True)
    async def handle_add_product(self) -> None:
        vid = self._selected_vid()
        if vid is None:
            self.notify("Choose one of your stalls first.", severity="warning")
            return
        stock = self.query_one("#input-prod-stock", Input).value
        try:
            product = await crud.create_product(
                self.app.state.identity,
                vid,
                name=self.query_one("#input-prod-name", Input).value,
                price=self.query_one("#input-prod-price", Input).value,
                unit=self.query_one("#input-prod-unit", Input).value,
                category=self.query_one("#input-prod-category", Input).value or None,
                stock_count=int(stock) if stock.isdigit() else 0,
            )
        except FeiraError as e:
            self.notify(e.message, severity="error")
            return
        self.notify(f"{product.name} added.")
        for field in ("name", "price", "unit", "category", "stock"):
            self.query_one(f"#input-prod-{field}", Input).value = ""
        self.load_products()

    @on(Button.Pressed, "#btn-toggle")
    @work(exclusive=True)
    async def handle_toggle(self) -> None:
        pid = self._selected_pid()
        if pid is None:
            return
        try:
            await crud.update_product(
                self.app.state.identity, pid, available=not self._products[pid].available
            )
        except FeiraError as e:
            self.notify(e.message, severity="error")
            return
        self.load_products()

    @on(Button.Pressed, "#btn-delete")
    @work(exclusive=True)
    async def handle_delete(self) -> None:
        pid = self._selected_pid()
        if pid is None:
            return
        if not await self.app.push_screen_wait(
            DialogModal(
                f"Delete {self._products[pid].name}? Past orders keep their copy.",
                primary_text="Delete",
                secondary_text="Cancel",
                tone="error",
            )
        ):
            return
        try:
            await crud.delete_product(self.app.state.identity, pid)
        except FeiraError as e:
            self.notify(e.message, severity="error")
            return
        self.load_products()
