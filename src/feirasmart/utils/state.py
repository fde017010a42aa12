from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from feirasmart import auth
from feirasmart.cart import Cart, JsonFileCartStore
from feirasmart.db import models
from feirasmart.utils.config import get_settings


@dataclass
class GlobalState:
    """
    Centralized client state shared by screens.

    Fields:
      - token: bearer token of the signed-in user, None when signed out
      - identity: uid and role resolved from the token
      - user: profile of the signed-in user
      - cart: the customer's cart, persisted per user in the cart directory
    """

    token: Optional[str] = None
    identity: Optional[models.Identity] = None
    user: Optional[models.User] = None
    cart: Cart = field(default_factory=Cart)

    @property
    def role(self) -> Optional[str]:
        return self.identity.role if self.identity else None

    async def sign_in(self, user: models.User, token: str) -> models.Identity:
        """Resolve the token and load this user's saved cart."""
        self.identity = await auth.authenticate(token)
        self.token = token
        self.user = user
        self.cart = Cart(
            JsonFileCartStore.for_user(get_settings().cart_dir, self.identity.uid)
        )
        return self.identity

    def sign_out(self) -> None:
        # the cart file stays on disk for the next session
        self.token = None
        self.identity = None
        self.user = None
        self.cart = Cart()
