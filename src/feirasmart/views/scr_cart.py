from typing import Optional

from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal
from textual.events import ScreenResume
from textual.widgets import Button, DataTable, Label, Rule

from feirasmart.utils.messages import CartChangedMessage, NewOrderMessage
from feirasmart.utils.pure import format_money
from feirasmart.views.base_screen import BaseScreen
from feirasmart.views.modal_checkout import CheckoutModal
from feirasmart.views.modal_dialog import DialogModal


class CartScreen(BaseScreen):
    """
    Cart contents grouped by stall, quantity edits and checkout.
    """

    def compose(self) -> ComposeResult:
        yield from super().compose()
        yield DataTable(id="table-cart")
        yield Label("Total: R$ 0,00", id="label-cart-total")
        yield Rule(line_style="dashed")
        with Horizontal(id="hort-buttons"):
            yield Button("-1", id="btn-dec")
            yield Button("+1", id="btn-inc")
            yield Button("Remove", id="btn-remove", variant="warning")
            yield Button("Clear Cart", id="btn-clear-cart")
            yield Button("Checkout", id="btn-checkout", variant="primary")

    def on_mount(self) -> None:
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_columns("Stall", "Product", "Qty", "Unit Price", "Line Total")
        self.handle_cart_change()

    @on(CartChangedMessage)
    @on(ScreenResume)
    def handle_cart_change(self) -> None:
        cart = self.app.state.cart
        table = self.query_one(DataTable)
        cursor = table.cursor_row
        table.clear()
        # rows are listed stall by stall, the way checkout splits them
        for items in cart.vendor_groups().values():
            for item in items:
                table.add_row(
                    item.vendor_name or f"Stall {item.vid}",
                    item.name,
                    f"{item.qty} {item.unit}",
                    format_money(item.price),
                    format_money(item.line_total),
                    key=str(item.pid),
                )
        if table.row_count:
            table.move_cursor(row=min(cursor, table.row_count - 1))
        self.query_one("#label-cart-total", Label).update(
            f"Total: {format_money(cart.total)}  ({len(cart.vendor_groups())} stall(s))"
        )

    def _selected_pid(self) -> Optional[int]:
        table = self.query_one(DataTable)
        if not table.row_count:
            return None
        row_key, _ = table.coordinate_to_cell_key(table.cursor_coordinate)
        return int(row_key.value)

    def _change_qty(self, delta: int) -> None:
        pid = self._selected_pid()
        if pid is None:
            return
        item = self.app.state.cart.get(pid)
        self.app.state.cart.set_quantity(pid, item.qty + delta)
        self.post_message(CartChangedMessage())

    @on(Button.Pressed, "#btn-inc")
    def handle_inc(self) -> None:
        self._change_qty(1)

    @on(Button.Pressed, "#btn-dec")
    def handle_dec(self) -> None:
        self._change_qty(-1)

    @on(Button.Pressed, "#btn-remove")
    @work()
    async def handle_remove_item(self) -> None:
        pid = self._selected_pid()
        if pid is None:
            return
        if await self.app.push_screen_wait(
            DialogModal(
                "Do you really want to remove this item from cart?",
                primary_text="Yes",
                secondary_text="No",
                tone="warning",
            )
        ):
            self.app.state.cart.remove(pid)
            self.post_message(CartChangedMessage())
            self.notify("Item removed from cart.")

    @on(Button.Pressed, "#btn-clear-cart")
    @work()
    async def handle_clear_cart(self) -> None:
        if self.app.state.cart.is_empty:
            self.notify("Cart is empty.", severity="warning")
            return
        if await self.app.push_screen_wait(
            DialogModal(
                "Do you really want to remove all items from cart?",
                primary_text="Yes",
                secondary_text="No",
                tone="error",
            )
        ):
            self.app.state.cart.clear()
            self.post_message(CartChangedMessage())

    @on(Button.Pressed, "#btn-checkout")
    @work()
    async def handle_checkout(self) -> None:
        if self.app.state.cart.is_empty:
            self.notify("Cart is empty.", severity="warning")
            return
        placed = await self.app.push_screen_wait(CheckoutModal())
        if placed:
            self.app.post_message(NewOrderMessage())
        self.post_message(CartChangedMessage())
