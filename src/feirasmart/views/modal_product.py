from typing import Optional

from textual import events, on
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.reactive import reactive
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, Markdown

from feirasmart.cart import CartItem
from feirasmart.db.models import Market, Product, Vendor
from feirasmart.utils.errors import FeiraError
from feirasmart.utils.pure import format_money, generate_markdown_table


class ProductModal(ModalScreen[bool]):
    """
    Product detail plus quantity picker.
    Returns True if the cart changed.
    """

    order_qty = reactive(1)

    def __init__(
        self, product: Product, vendor: Optional[Vendor], market: Market
    ) -> None:
        super().__init__()
        self._prod = product
        self._vendor = vendor
        self._market = market

    def compose(self) -> ComposeResult:
        with Horizontal(id="hort-prod-detail"):
            yield Markdown("", id="md-product")
            with Vertical():
                yield Label("Quantity")
                with Horizontal():
                    yield Button("-", id="btn-sub-qty")
                    yield Input(value="1", id="input-order-qty", type="integer")
                    yield Button("+", id="btn-add-qty")
                with Horizontal():
                    yield Button("Go Back", id="btn-quit")
                    yield Button("Add to Cart", id="btn-addcart", variant="primary")

    async def on_mount(self):
        p = self._prod
        rows = [
            ["Stall", self._vendor.stall_name if self._vendor else "-"],
            ["Market", self._market.name],
            ["Price", f"{format_money(p.price)} / {p.unit}"],
            ["Category", p.category],
            ["In stock", p.stock_count],
            ["Description", p.descr],
        ]
        md = f"### {p.name}\n\n" + generate_markdown_table(
            ["Attribute", "Value"], rows, ["l", "l"]
        )
        await self.query_one("#md-product", Markdown).update(md)

        in_cart = self.app.state.cart.get(p.pid)
        if in_cart:
            self.query_one("#btn-addcart", Button).label = f"Add more ({in_cart.qty} in cart)"
        if p.stock_count < 1 or not p.available:
            btn = self.query_one("#btn-addcart", Button)
            btn.label = "Out of Stock"
            btn.disabled = True
            btn.variant = "warning"
        self.query_one("#input-order-qty").focus()

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self.dismiss(False)

    def on_input_changed(self, message: Input.Changed) -> None:
        if message.input.id == "input-order-qty" and message.value.isdigit():
            self.order_qty = max(1, min(int(message.value), max(self._prod.stock_count, 1)))

    def watch_order_qty(self, qty: int) -> None:
        self.query_one("#btn-sub-qty", Button).disabled = qty <= 1
        self.query_one("#btn-add-qty", Button).disabled = qty >= self._prod.stock_count
        qty_input = self.query_one("#input-order-qty", Input)
        if qty_input.value != str(qty):
            qty_input.value = str(qty)

    @on(Button.Pressed, "#btn-add-qty")
    def handle_add_qty(self):
        self.order_qty += 1

    @on(Button.Pressed, "#btn-sub-qty")
    def handle_sub_qty(self):
        self.order_qty -= 1

    @on(Button.Pressed, "#btn-quit")
    def handle_quit(self):
        self.dismiss(False)

    @on(Button.Pressed, "#btn-addcart")
    def handle_addcart(self):
        p = self._prod
        item = CartItem(
            pid=p.pid,
            vid=p.vid,
            mid=self._market.mid,
            name=p.name,
            price=p.price,
            unit=p.unit,
            qty=self.order_qty,
            vendor_name=self._vendor.stall_name if self._vendor else "",
        )
        try:
            self.app.state.cart.add(item)
        except FeiraError as e:
            self.notify(e.message, severity="error")
            return
        self.app.notify(f"{p.name} added to cart.")
        self.dismiss(True)
