from typing import Dict, Optional

from textual import on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.events import ScreenResume
from textual.widgets import Button, DataTable, Label, Markdown, Select

from feirasmart.db import crud, orders
from feirasmart.db.models import Order, OrderStatus
from feirasmart.utils.errors import FeiraError
from feirasmart.utils.messages import NewOrderMessage, OrderStatusChangedMessage
from feirasmart.utils.pure import format_money, generate_markdown_table
from feirasmart.views.base_screen import BaseScreen

STATUS_LABELS = {
    OrderStatus.PENDENTE: "Pending",
    OrderStatus.CONFIRMADO: "Confirmed",
    OrderStatus.PRONTO: "Ready",
    OrderStatus.ENTREGUE: "Collected",
    OrderStatus.CANCELADO: "Cancelled",
}


class OrdersScreen(BaseScreen):
    """
    Customers see their own reservations; vendors see orders placed at their
    stalls and move them through pendente -> confirmado -> pronto -> entregue.
    """

    def __init__(self) -> None:
        super().__init__()
        self._orders: Dict[int, Order] = {}
        self._stalls: Dict[int, str] = {}
        self.selected_ono: Optional[int] = None

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical():
            with Horizontal(id="hort-order-filter"):
                yield Label("Status")
                yield Select(
                    [(label, s.value) for s, label in STATUS_LABELS.items()],
                    prompt="All",
                    id="select-filter",
                )
                yield Button("Refresh", id="btn-refresh")
            yield DataTable(id="table-orders")
            yield Markdown("", id="md-order-detail")
            with Horizontal(id="hort-status-controls"):
                yield Select([], prompt="Move to...", id="select-next-status")
                yield Button("Apply", id="btn-apply-status", variant="success")

    def on_mount(self) -> None:
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_columns("Order", "Date", "Stall", "Status", "Total")
        if self.app.state.role != "feirante":
            self.query_one("#hort-status-controls").add_class("hidden")

    @on(ScreenResume)
    @on(NewOrderMessage)
    @on(OrderStatusChangedMessage)
    @on(Button.Pressed, "#btn-refresh")
    @on(Select.Changed, "#select-filter")
    def handle_refresh(self) -> None:
        self.load_orders()

    @work(exclusive=True, group="orders")
    async def load_orders(self) -> None:
        identity = self.app.state.identity
        if identity is None:
            return
        status = self.query_one("#select-filter", Select).value
        status = status if isinstance(status, str) else None
        try:
            found = await orders.list_orders(identity, status=status)
        except FeiraError as e:
            self.notify(e.message, severity="error")
            return

        for vid in {o.vid for o in found} - set(self._stalls):
            vendor = await crud.get_vendor(vid)
            self._stalls[vid] = vendor.stall_name if vendor else f"Stall {vid}"

        self._orders = {o.ono: o for o in found}
        table = self.query_one(DataTable)
        table.clear()
        for o in found:
            table.add_row(
                f"#{o.ono}",
                o.created_at.strftime("%d/%m/%Y %H:%M"),
                self._stalls.get(o.vid, "-"),
                STATUS_LABELS[o.status],
                format_money(o.total),
                key=str(o.ono),
            )
        if not found:
            self.selected_ono = None
            await self.query_one("#md-order-detail", Markdown).update(
                "### No orders yet."
            )

    @on(DataTable.RowHighlighted, "#table-orders")
    def handle_row_highlight(self, event: DataTable.RowHighlighted) -> None:
        if event.row_key is None or event.row_key.value is None:
            return
        self.selected_ono = int(event.row_key.value)
        self.load_detail(self.selected_ono)

    @work(exclusive=True, group="detail")
    async def load_detail(self, ono: int) -> None:
        try:
            order = await orders.get_order(self.app.state.identity, ono)
        except FeiraError as e:
            self.notify(e.message, severity="error")
            return

        rows = [
            [i.product_name, i.qty, format_money(i.uprice), format_money(i.line_total)]
            for i in order.items
        ]
        md = (
            f"### Order #{order.ono} - {STATUS_LABELS[order.status]}\n\n"
            f"Placed: {order.created_at:%d/%m/%Y %H:%M}  \n"
            f"Updated: {order.updated_at:%d/%m/%Y %H:%M}  \n"
            f"Notes: {order.notes or '-'}\n\n"
            + generate_markdown_table(
                ["Product", "Qty", "Unit Price", "Line Total"], rows, ["l", "r", "r", "r"]
            )
            + f"\n\n**Total:** {format_money(order.total)}"
        )
        await self.query_one("#md-order-detail", Markdown).update(md)

        next_select = self.query_one("#select-next-status", Select)
        choices = orders.allowed_transitions(order.status)
        next_select.set_options([(STATUS_LABELS[s], s.value) for s in choices])
        self.query_one("#btn-apply-status", Button).disabled = not choices

    @on(Button.Pressed, "#btn-apply-status")
    @work(exclusive=True, group="status")
    async def handle_apply_status(self) -> None:
        target = self.query_one("#select-next-status", Select).value
        if self.selected_ono is None or not isinstance(target, str):
            self.notify("Pick an order and a new status.", severity="warning")
            return
        try:
            order = await orders.update_order_status(
                self.app.state.identity, self.selected_ono, target
            )
        except FeiraError as e:
            self.notify(e.message, severity="error")
            return
        self.notify(f"Order #{order.ono} is now {STATUS_LABELS[order.status]}.")
        self.post_message(OrderStatusChangedMessage(order.ono, order.status.value))
