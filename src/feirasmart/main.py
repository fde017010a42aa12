from textual import on, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import LoadingIndicator

from feirasmart.utils.logger import get_logger
from feirasmart.utils.messages import (
    ModeSwitchedMessage,
    QuitRequestedMessage,
    UserLogoutMessage,
)
from feirasmart.utils.state import GlobalState
from feirasmart.views.scr_cart import CartScreen
from feirasmart.views.scr_login import LoginScreen
from feirasmart.views.scr_markets import MarketsScreen
from feirasmart.views.scr_orders import OrdersScreen
from feirasmart.views.scr_stall import StallScreen

logger = get_logger(__name__)


class FeiraSmartApp(App):
    BINDINGS = [
        Binding("ctrl+t", "switch_light", "Toggle Theme", show=True),
    ]

    MODES = {
        "markets": MarketsScreen,
        "cart": CartScreen,
        "orders": OrdersScreen,
        "stall": StallScreen,
    }

    CUSTOMER_MODES = {
        "markets": "Markets",
        "cart": "Cart",
        "orders": "My Orders",
    }
    VENDOR_MODES = {"stall": "My Stall", "orders": "Orders"}
    MODE_TITLES = {**CUSTOMER_MODES, **VENDOR_MODES}

    HOME_MODES = {"cliente": "markets", "feirante": "stall"}

    CSS_PATH = "styles/app.tcss"

    state: GlobalState

    def __init__(self):
        super().__init__()
        self.state = GlobalState()

    def compose(self) -> ComposeResult:
        yield LoadingIndicator()

    async def on_mount(self) -> None:
        self.main_flow()

    def action_switch_light(self):
        if self.theme == "textual-dark":
            self.theme = "solarized-light"
        else:
            self.theme = "textual-dark"
        self.notify(f"Theme changed to {self.theme}")

    @on(ModeSwitchedMessage)
    def handle_mode_switched(self, message: ModeSwitchedMessage):
        logger.debug(f"mode {message.old_mode} -> {message.new_mode}")

    @on(UserLogoutMessage)
    @work
    async def handle_user_logout(self):
        logger.info(f"user {self.state.identity.uid} signed out")
        self.state.sign_out()
        self.notify("Logout successful.")
        self.main_flow()

    @on(QuitRequestedMessage)
    def handle_quit(self):
        self.exit()

    @work
    async def main_flow(self):
        await self.push_screen_wait(LoginScreen())
        logger.info(f"user {self.state.identity.uid} signed in as {self.state.role}")
        mode = self.HOME_MODES[self.state.role]
        self.post_message(ModeSwitchedMessage(self.current_mode, mode))
        await self.switch_mode(mode)


def run() -> None:
    FeiraSmartApp().run()


if __name__ == "__main__":
    run()
