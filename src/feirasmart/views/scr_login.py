from textual import on, work
from textual.app import ComposeResult
from textual.containers import Container, Horizontal, Vertical
from textual.events import Key
from textual.widgets import Button, Input, Label, Select, TabbedContent, TabPane

from feirasmart import auth
from feirasmart.utils.errors import FeiraError
from feirasmart.utils.messages import UserLoginMessage
from feirasmart.views.base_screen import BaseScreen
from feirasmart.views.modal_dialog import QuitDialogModal


class LoginScreen(BaseScreen):
    """
    Sign in or create an account. Dismissed once the app state holds a
    signed-in identity.
    """

    def __init__(self):
        super().__init__()
        self.configure(header_sub_title="Login", show_sidebar=False)

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with TabbedContent(id="super-tab-loginscr"):
            with TabPane("Login", id="tab-login"):
                with Vertical(id="div-login"):
                    yield Label("Email")
                    yield Input(placeholder="ana@example.com", id="input-login-email")
                    yield Label("Password")
                    yield Input(
                        placeholder="*********", password=True, id="input-login-pwd"
                    )
                    with Horizontal(id="div-login-btns"):
                        yield Button("Quit", id="btn-quit")
                        yield Button("Login", id="btn-login", variant="primary")

            with TabPane("Sign up", id="tab-signup"):
                with Vertical(id="div-reg"):
                    yield Label("Name")
                    yield Input(placeholder="Maria da Silva", id="input-reg-name")
                    yield Label("Email")
                    yield Input(placeholder="user@example.com", id="input-reg-email")
                    yield Label("Phone (optional)")
                    yield Input(placeholder="11 99999-0000", id="input-reg-phone")
                    yield Label("Password")
                    yield Input(
                        placeholder="*********", password=True, id="input-reg-pwd"
                    )
                    yield Label("I am a")
                    yield Select(
                        [("Customer (cliente)", "cliente"), ("Vendor (feirante)", "feirante")],
                        value="cliente",
                        allow_blank=False,
                        id="select-reg-role",
                    )
                    with Container(id="div-reg-btns"):
                        yield Button("Register", id="btn-reg", variant="primary")

    def on_mount(self):
        self.query_one("#input-login-email").focus()

    def on_key(self, event: Key) -> None:
        if event.key != "enter":
            return
        if self.focused is self.query_one("#input-login-pwd"):
            self.handle_login_submit()
        elif self.focused is self.query_one("#input-reg-pwd"):
            self.handle_registration_submit()

    @on(Button.Pressed, "#btn-login")
    @work(exclusive=True)
    async def handle_login_submit(self) -> None:
        email = self.query_one("#input-login-email", Input).value.strip()
        pwd_input = self.query_one("#input-login-pwd", Input)

        if not email or not pwd_input.value:
            self.notify("Email or password cannot be empty!", severity="error")
            return

        try:
            user, token = await auth.login(email, pwd_input.value)
            await self.app.state.sign_in(user, token)
        except FeiraError as e:
            self.notify(e.message or "Login failed.", severity="error")
            pwd_input.value = ""
            pwd_input.focus()
            pwd_input.add_class("-invalid")
            return

        self.notify(f"Olá, {user.name}!")
        self.app.post_message(UserLoginMessage())
        self.dismiss()

    @on(Button.Pressed, "#btn-reg")
    @work(exclusive=True)
    async def handle_registration_submit(self) -> None:
        name = self.query_one("#input-reg-name", Input).value.strip()
        email = self.query_one("#input-reg-email", Input).value.strip()
        phone = self.query_one("#input-reg-phone", Input).value.strip()
        pwd = self.query_one("#input-reg-pwd", Input).value
        role = self.query_one("#select-reg-role", Select).value

        if not name or not email or not pwd:
            self.notify("Make sure all inputs are filled.", severity="error")
            return

        try:
            await auth.register(email, pwd, name, role=role, phone=phone or None)
        except FeiraError as e:
            self.notify(e.message, severity="error")
            return

        self.get_child_by_type(TabbedContent).active = "tab-login"
        self.query_one("#input-login-email", Input).value = email
        pwd_login = self.query_one("#input-login-pwd", Input)
        pwd_login.value = pwd
        pwd_login.focus()
        self.notify("Registration successful. Press Login to continue.")

    @on(Button.Pressed, "#btn-quit")
    def handle_quit(self) -> None:
        self.app.push_screen(QuitDialogModal())
