"""
Per-session application state.

Holds the signed-in user, the craft cart, and the marketplace search
filters. State is an immutable value; every change goes through the pure
``reduce`` function. A ``Session`` owns one state for one login and is
disposed on logout, so no state is shared between sessions.

Usage:
    session = Session(User(id="u1", email="a@b.ke", name="Achieng"))
    session.dispatch(AddToCart(CartItem("p1", 2, 850.0)))
    assert cart_total(session.state) == 1700.0
    session.dispose()
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class User:
    id: str
    email: str
    name: str = ""
    role: str = "customer"


@dataclass(frozen=True)
class CartItem:
    product_id: str
    quantity: int
    price: float


@dataclass(frozen=True)
class SearchFilters:
    query: str = ""
    category: str = ""
    location: str = ""


@dataclass(frozen=True)
class AppState:
    current_user: Optional[User] = None
    cart: tuple[CartItem, ...] = ()
    filters: SearchFilters = field(default_factory=SearchFilters)


# Actions ---------------------------------------------------------------

@dataclass(frozen=True)
class Login:
    user: User


@dataclass(frozen=True)
class Logout:
    pass


@dataclass(frozen=True)
class AddToCart:
    item: CartItem


@dataclass(frozen=True)
class RemoveFromCart:
    product_id: str


@dataclass(frozen=True)
class UpdateCartQuantity:
    product_id: str
    quantity: int


@dataclass(frozen=True)
class ClearCart:
    pass


@dataclass(frozen=True)
class SetSearchQuery:
    query: str


@dataclass(frozen=True)
class SetCategory:
    category: str


@dataclass(frozen=True)
class SetLocation:
    location: str


Action = Union[
    Login, Logout, AddToCart, RemoveFromCart, UpdateCartQuantity, ClearCart,
    SetSearchQuery, SetCategory, SetLocation,
]


def _add_item(cart: tuple[CartItem, ...], item: CartItem) -> tuple[CartItem, ...]:
    if any(c.product_id == item.product_id for c in cart):
        return tuple(
            replace(c, quantity=c.quantity + item.quantity) if c.product_id == item.product_id
            else c
            for c in cart
        )
    return cart + (item,)


def _remove_item(cart: tuple[CartItem, ...], product_id: str) -> tuple[CartItem, ...]:
    return tuple(c for c in cart if c.product_id != product_id)


def reduce(state: AppState, action: Action) -> AppState:
    """Return the state that results from applying ``action``; never mutates."""
    if isinstance(action, Login):
        return replace(state, current_user=action.user)
    if isinstance(action, Logout):
        return replace(state, current_user=None, cart=())
    if isinstance(action, AddToCart):
        return replace(state, cart=_add_item(state.cart, action.item))
    if isinstance(action, RemoveFromCart):
        return replace(state, cart=_remove_item(state.cart, action.product_id))
    if isinstance(action, UpdateCartQuantity):
        if action.quantity <= 0:
            return replace(state, cart=_remove_item(state.cart, action.product_id))
        return replace(state, cart=tuple(
            replace(c, quantity=action.quantity) if c.product_id == action.product_id else c
            for c in state.cart
        ))
    if isinstance(action, ClearCart):
        return replace(state, cart=())
    if isinstance(action, SetSearchQuery):
        return replace(state, filters=replace(state.filters, query=action.query))
    if isinstance(action, SetCategory):
        return replace(state, filters=replace(state.filters, category=action.category))
    if isinstance(action, SetLocation):
        return replace(state, filters=replace(state.filters, location=action.location))
    raise ValueError(f"Unknown action: {action!r}")


def cart_total(state: AppState) -> float:
    return sum(item.price * item.quantity for item in state.cart)


def cart_item_count(state: AppState) -> int:
    return sum(item.quantity for item in state.cart)


class Session:
    """One signed-in user's state, created at login and disposed at logout."""

    def __init__(self, user: User) -> None:
        self._state = reduce(AppState(), Login(user))
        self._disposed = False
        logger.debug("Session started for %s", user.id)

    @property
    def state(self) -> AppState:
        return self._state

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispatch(self, action: Action) -> AppState:
        if self._disposed:
            raise RuntimeError("Session has been disposed")
        self._state = reduce(self._state, action)
        return self._state

    def dispose(self) -> None:
        """Log out and drop the session's state."""
        if self._disposed:
            return
        user = self._state.current_user
        self._state = reduce(self._state, Logout())
        self._disposed = True
        logger.debug("Session disposed for %s", user.id if user else "anonymous")
