from textual import events, on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, Markdown

from feirasmart.checkout import CheckoutError, checkout, group_cart_items
from feirasmart.utils.errors import FeiraError
from feirasmart.utils.pure import format_money, generate_markdown_table
from feirasmart.views.modal_dialog import DialogModal


def outcome_report(error: CheckoutError) -> str:
    """Markdown listing which stall orders went through and which did not."""
    rows = []
    for o in error.outcomes:
        stall = o.request.vendor_name or f"Stall {o.request.vid}"
        if o.ok:
            rows.append([stall, f"placed as order #{o.order.ono}"])
        else:
            rows.append([stall, f"failed: {o.error}"])
    hint = (
        "Try again in a moment."
        if error.retryable
        else "Fix the items above before trying again."
    )
    return (
        "### Checkout incomplete\n\n"
        + generate_markdown_table(["Stall", "Result"], rows, ["l", "l"])
        + "\n\nOrders marked as placed will not be undone. Remove their items "
        "from the cart before retrying so they are not ordered twice. "
        + hint
    )


class CheckoutModal(ModalScreen[bool]):
    """
    Summary of the reservation, one order per stall, plus optional notes.
    Returns True if every order was placed.
    """

    def compose(self) -> ComposeResult:
        with Vertical():
            yield Markdown("", id="md-summary")
            yield Label("Notes for the stalls (optional)")
            yield Input(placeholder="Pick up around 9am", id="input-notes")
            with Horizontal():
                yield Button("Go Back", id="btn-quit")
                yield Button("Place Order", id="btn-submit", variant="primary")

    async def on_mount(self):
        cart = self.app.state.cart
        md = "### Order Summary\n\n"
        try:
            requests = group_cart_items(cart.items)
        except FeiraError as e:
            md += f"**{e.message}**"
            self.query_one("#btn-submit", Button).disabled = True
            await self.query_one("#md-summary", Markdown).update(md)
            return

        for req in requests:
            rows = [
                [i.product_name, i.qty, format_money(i.uprice), format_money(i.uprice * i.qty)]
                for i in req.items
            ]
            md += f"#### {req.vendor_name or f'Stall {req.vid}'}\n\n"
            md += generate_markdown_table(
                ["Product", "Qty", "Unit Price", "Line Total"], rows, ["l", "r", "r", "r"]
            )
            md += "\n\n"
        md += f"**{len(requests)} order(s), total {format_money(cart.total)}**"
        await self.query_one("#md-summary", Markdown).update(md)
        self.query_one("#input-notes").focus()

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self.dismiss(False)

    @on(Button.Pressed, "#btn-submit")
    @work(exclusive=True)
    async def handle_submit(self):
        if not await self.app.push_screen_wait(
            DialogModal(
                "Place the reservation? This cannot be undone.",
                primary_text="Yes",
                secondary_text="No",
                tone="positive",
            )
        ):
            return

        notes = self.query_one("#input-notes", Input).value
        state = self.app.state
        try:
            result = await checkout(state.cart, state.identity, notes=notes)
        except CheckoutError as e:
            await self.query_one("#md-summary", Markdown).update(outcome_report(e))
            self.notify(e.message, severity="error")
            return
        except FeiraError as e:
            severity = "warning" if e.retryable else "error"
            self.notify(e.message, severity=severity)
            return

        numbers = ", ".join(f"#{n}" for n in result.order_ids)
        self.notify(f"Reservation placed. Orders {numbers}.")
        self.dismiss(True)

    @on(Button.Pressed, "#btn-quit")
    def handle_quit(self):
        self.dismiss(False)
