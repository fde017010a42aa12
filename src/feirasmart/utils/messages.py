from textual.message import Message


class QuitRequestedMessage(Message):
    """
    broadcasted when the app is about to quit
    """

    bubble = True


class UserLogoutMessage(Message):
    """
    broadcasted when the user logs out
    """

    bubble = True


class UserLoginMessage(Message):
    """
    Fired when user logged in, so the screen can refresh
    """

    bubble = True


class CartChangedMessage(Message):
    """
    Fired whenever the cart is mutated (add, quantity change, removal, checkout).
    Post at App level when sent from outside CartScreen.
    """

    bubble = True


class NewOrderMessage(Message):
    """
    Fired after checkout placed at least one order.
    Listened to by the orders screen.
    """

    bubble = True


class OrderStatusChangedMessage(Message):
    """
    Fired by the vendor's order view after a status transition.
    """

    bubble = True

    def __init__(self, ono: int, status: str) -> None:
        super().__init__()
        self.ono = ono
        self.status = status


class ModeSwitchedMessage(Message):
    """
    fired whenever switch_mode is called
    must be fired from app level
    """

    bubble = True

    def __init__(self, old_mode: str, new_mode: str) -> None:
        super().__init__()
        self.old_mode = old_mode
        self.new_mode = new_mode
