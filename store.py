"""
Store engine

`StoreState` owns the slices every shopper sees (user registry, catalog,
orders, coupons, reviews, settings). A `StoreEngine` is one shopper's view of
that state: it adds the current user and the cart, and exposes every domain
operation. Views read deep-copied snapshots through properties and change
state only through the engine's methods.
Settings, coupons, reviews, orders and users are written to `Storage` after
every change once the state has been loaded; cart and catalog live in memory
only.
"""

import logging
import math
from contextlib import contextmanager
from datetime import datetime, time, timezone
from typing import Any, Callable, Dict, List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, TypeAdapter, ValidationError

from config import AppConfig
from errors import AuthInProgressError, DuplicateCouponError
from identity import IdentityService, Session, avatar_url, map_identity_user
from schemas import (
    CartItem, Coupon, Order, OrderStatus, Product, Review, StoreSettings, User, UserRole,
)
from seed import demo_coupons, demo_orders, demo_products, demo_reviews, default_settings
from storage import Storage

logger = logging.getLogger(__name__)

Listener = Callable[[str], None]

LOCAL_ADMIN_ID = "admin-local"
LOCAL_ADMIN_MARKER = "local_admin"

_ADAPTERS: Dict[str, TypeAdapter] = {
    "settings": TypeAdapter(StoreSettings),
    "coupons": TypeAdapter(List[Coupon]),
    "reviews": TypeAdapter(List[Review]),
    "orders": TypeAdapter(List[Order]),
    "users": TypeAdapter(List[User]),
}


class CouponCheck(BaseModel):
    discount: float = 0
    reason: Literal["ok", "not_found", "below_minimum", "expired"]


def round_rating(value: float) -> float:
    """Round half up to one decimal."""
    return math.floor(value * 10 + 0.5) / 10


def recompute_ratings(products: List[Product], reviews: List[Review]) -> List[Product]:
    """Set each product's rating to the mean of its reviews.

    Products without reviews keep whatever rating they already had.
    """
    by_product: Dict[str, List[int]] = {}
    for r in reviews:
        by_product.setdefault(r.product_id, []).append(r.rating)
    updated = []
    for p in products:
        ratings = by_product.get(p.id)
        if not ratings:
            updated.append(p)
            continue
        updated.append(p.model_copy(update={"rating": round_rating(sum(ratings) / len(ratings))}))
    return updated


class StoreState:
    """Slices shared by every engine built on it, plus their persistence."""

    def __init__(self, storage: Storage,
                 config: Optional[AppConfig] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 products: Optional[List[Product]] = None):
        self.storage = storage
        self.config = config or AppConfig()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.slices: Dict[str, Any] = {
            "users": [],
            "products": list(products) if products is not None else demo_products(),
            "orders": [],
            "coupons": demo_coupons(),
            "reviews": demo_reviews(),
            "settings": default_settings(),
        }
        self.initialized = False
        self._listeners: List[Listener] = []

    def key(self, name: str) -> str:
        return self.config.storage_prefix + name

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set(self, name: str, value: Any) -> None:
        self.slices[name] = value
        if self.initialized and name in _ADAPTERS:
            self._save(name)
        for listener in list(self._listeners):
            listener(name)

    def _save(self, name: str) -> None:
        blob = _ADAPTERS[name].dump_json(self.slices[name]).decode()
        self.storage.set(self.key(name), blob)
        logger.debug("Persisted %s (%d bytes)", name, len(blob))

    def _load(self, name: str, default: Any) -> Any:
        raw = self.storage.get(self.key(name))
        if raw is None:
            return default
        try:
            return _ADAPTERS[name].validate_json(raw)
        except ValidationError as e:
            logger.warning("Discarding unreadable %s blob: %s", name, e)
            return default

    def load(self) -> None:
        """Read persisted slices, seeding defaults for missing ones. Runs once."""
        if self.initialized:
            return
        s = self.slices
        s["settings"] = self._load("settings", default_settings())
        s["coupons"] = self._load("coupons", demo_coupons())
        s["reviews"] = self._load("reviews", demo_reviews())
        s["products"] = recompute_ratings(s["products"], s["reviews"])
        s["orders"] = self._load("orders", None)
        if s["orders"] is None:
            s["orders"] = demo_orders(self.clock())
        s["users"] = self._load("users", [])
        self.initialized = True
        logger.info("Store state loaded: %d products, %d orders",
                    len(s["products"]), len(s["orders"]))


SESSION_SLICES = ("user", "cart")


class StoreEngine:
    """One shopper's session over a `StoreState`.

    Without ``state`` the engine builds a private one from ``storage``,
    ``config``, ``clock`` and ``products``. ``session_key`` keeps the local
    administrator marker apart from other engines sharing the same storage.
    """

    def __init__(self, storage: Storage, identity: IdentityService,
                 config: Optional[AppConfig] = None,
                 clock: Optional[Callable[[], datetime]] = None,
                 products: Optional[List[Product]] = None,
                 state: Optional[StoreState] = None,
                 session_key: Optional[str] = None):
        self.state = state or StoreState(storage, config=config, clock=clock, products=products)
        self.storage = self.state.storage
        self.identity = identity
        self.config = self.state.config
        self._clock = self.state.clock
        self._marker_key = self.state.key(LOCAL_ADMIN_MARKER)
        if session_key:
            self._marker_key += "_" + session_key

        self._user: Optional[User] = None
        self._cart: List[CartItem] = []

        self._auth_busy = False
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._listeners: List[Listener] = []
        self._state_unsubscribes: List[Callable[[], None]] = []

    # Shared slices, read through the state

    @property
    def _users(self) -> List[User]:
        return self.state.slices["users"]

    @property
    def _products(self) -> List[Product]:
        return self.state.slices["products"]

    @property
    def _orders(self) -> List[Order]:
        return self.state.slices["orders"]

    @property
    def _coupons(self) -> List[Coupon]:
        return self.state.slices["coupons"]

    @property
    def _reviews(self) -> List[Review]:
        return self.state.slices["reviews"]

    @property
    def _settings(self) -> StoreSettings:
        return self.state.slices["settings"]

    # Snapshots

    @property
    def user(self) -> Optional[User]:
        return self._user.model_copy(deep=True) if self._user else None

    @property
    def users(self) -> List[User]:
        return [u.model_copy(deep=True) for u in self._users]

    @property
    def products(self) -> List[Product]:
        return [p.model_copy(deep=True) for p in self._products]

    @property
    def cart(self) -> List[CartItem]:
        return [i.model_copy(deep=True) for i in self._cart]

    @property
    def orders(self) -> List[Order]:
        return [o.model_copy(deep=True) for o in self._orders]

    @property
    def coupons(self) -> List[Coupon]:
        return [c.model_copy(deep=True) for c in self._coupons]

    @property
    def reviews(self) -> List[Review]:
        return [r.model_copy(deep=True) for r in self._reviews]

    @property
    def settings(self) -> StoreSettings:
        return self._settings.model_copy(deep=True)

    @property
    def cart_total(self) -> float:
        return sum(item.price * item.quantity for item in self._cart)

    @property
    def cart_count(self) -> int:
        return sum(item.quantity for item in self._cart)

    @property
    def initialized(self) -> bool:
        return self.state.initialized

    def get_product(self, product_id: str) -> Optional[Product]:
        for p in self._products:
            if p.id == product_id:
                return p.model_copy(deep=True)
        return None

    # Observation

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(slice_name)`` after every change.

        Changes to shared slices made through other engines are reported too.
        """
        self._listeners.append(listener)
        state_unsubscribe = self.state.subscribe(listener)
        self._state_unsubscribes.append(state_unsubscribe)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
            state_unsubscribe()

        return unsubscribe

    def _set(self, name: str, value: Any) -> None:
        if name not in SESSION_SLICES:
            self.state.set(name, value)
            return
        setattr(self, "_" + name, value)
        for listener in list(self._listeners):
            listener(name)

    # Lifecycle

    async def start(self) -> None:
        """Resolve the session, load persisted slices and start listening."""
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self.identity.on_session_change(self._on_session_change)

        if self._local_admin_active():
            self._user = self._local_admin()
        else:
            session = await self.identity.get_session()
            if session is not None:
                self._user = self._map_session(session)

        self.state.load()
        logger.info("Engine started: user=%s", self._user.id if self._user else None)

    def dispose(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for unsubscribe in self._state_unsubscribes:
            unsubscribe()
        self._state_unsubscribes.clear()
        self._listeners.clear()

    # Session bridge

    def _local_admin_active(self) -> bool:
        return bool(self.storage.get(self._marker_key))

    def _today(self) -> str:
        return self._clock().astimezone().date().isoformat()

    def _local_admin(self) -> User:
        return User(
            id=LOCAL_ADMIN_ID,
            name="Administrator",
            email=self.config.local_admin_username,
            role=UserRole.ADMIN,
            avatar=avatar_url("Admin", background="D4AF37", color="fff"),
            joined=self._today(),
        )

    def _map_session(self, session: Session) -> User:
        return map_identity_user(session.user, self.config, today=self._clock().astimezone().date())

    def _on_session_change(self, event: str, session: Optional[Session]) -> None:
        if self._local_admin_active():
            return
        logger.debug("Session change: %s", event)
        self._set("user", self._map_session(session) if session else None)

    @contextmanager
    def _auth_operation(self):
        if self._auth_busy:
            raise AuthInProgressError("An authentication request is already in progress")
        self._auth_busy = True
        try:
            yield
        finally:
            self._auth_busy = False

    async def login(self, email: str, password: str) -> None:
        with self._auth_operation():
            if email == self.config.local_admin_username and password == self.config.local_admin_password:
                self.storage.set(self._marker_key, "true")
                self._set("user", self._local_admin())
                logger.info("Local administrator signed in")
                return
            await self.identity.sign_in_with_password(email, password)

    async def signup(self, name: str, email: str, password: str) -> None:
        with self._auth_operation():
            await self.identity.sign_up(email, password, full_name=name, redirect_to=self.config.site_url)

    async def logout(self) -> None:
        with self._auth_operation():
            if self._local_admin_active():
                self.storage.remove(self._marker_key)
            else:
                await self.identity.sign_out()
            self._set("user", None)

    async def request_password_reset(self, email: str) -> None:
        with self._auth_operation():
            await self.identity.reset_password_for_email(email, redirect_to=self.config.site_url + "/#/reset-password")

    # Users

    def update_user_profile(self, changes: Dict[str, Any]) -> None:
        if self._user is None:
            return
        self._set("user", self._user.model_copy(update=changes))

    def add_user(self, user: User) -> None:
        self._set("users", [u for u in self._users if u.id != user.id] + [user])

    def delete_user(self, user_id: str) -> None:
        self._set("users", [u for u in self._users if u.id != user_id])

    # Cart

    def add_to_cart(self, product: Product, quantity: int = 1) -> None:
        if any(item.id == product.id for item in self._cart):
            cart = [
                item.model_copy(update={"quantity": item.quantity + quantity}) if item.id == product.id else item
                for item in self._cart
            ]
        else:
            cart = self._cart + [CartItem(**product.model_dump(), quantity=quantity)]
        self._set("cart", cart)

    def remove_from_cart(self, product_id: str) -> None:
        self._set("cart", [item for item in self._cart if item.id != product_id])

    def update_cart_quantity(self, product_id: str, quantity: int) -> None:
        if quantity <= 0:
            self.remove_from_cart(product_id)
            return
        self._set("cart", [
            item.model_copy(update={"quantity": quantity}) if item.id == product_id else item
            for item in self._cart
        ])

    def clear_cart(self) -> None:
        self._set("cart", [])

    # Coupons

    def _find_coupon(self, code: str) -> Optional[Coupon]:
        return next((c for c in self._coupons if c.code == code), None)

    def _expired(self, coupon: Coupon) -> bool:
        if coupon.expiry_date is None:
            return False
        local_now = self._clock().astimezone().replace(tzinfo=None)
        return local_now > datetime.combine(coupon.expiry_date, time.max)

    def check_coupon(self, code: str) -> CouponCheck:
        coupon = self._find_coupon(code)
        if coupon is None:
            return CouponCheck(reason="not_found")
        total = self.cart_total
        if total < coupon.min_order_value:
            return CouponCheck(reason="below_minimum")
        if self._expired(coupon):
            return CouponCheck(reason="expired")
        if coupon.discount_type == "percentage":
            discount = total * coupon.value / 100
        else:
            discount = coupon.value
        return CouponCheck(discount=min(discount, total), reason="ok")

    def apply_coupon(self, code: str) -> float:
        """Discount for ``code`` against the current cart, 0 when it does not apply."""
        return self.check_coupon(code).discount

    def add_coupon(self, coupon: Coupon) -> None:
        if self._find_coupon(coupon.code) is not None:
            raise DuplicateCouponError(coupon.code)
        self._set("coupons", self._coupons + [coupon])

    def delete_coupon(self, code: str) -> None:
        self._set("coupons", [c for c in self._coupons if c.code != code])

    # Orders

    def place_order(self, coupon_code: Optional[str] = None) -> Optional[Order]:
        if self._user is None:
            return None
        order = Order(
            id=str(ObjectId()),
            user_id=self._user.id,
            items=[item.model_copy(deep=True) for item in self._cart],
            total=self.cart_total,
            discount=self.apply_coupon(coupon_code) if coupon_code else 0,
            status="pending",
            date=self._clock(),
        )
        self._set("orders", [order] + self._orders)
        self._set("cart", [])
        logger.info("Order %s placed by %s: total=%.2f discount=%.2f",
                    order.id, order.user_id, order.total, order.discount)
        return order.model_copy(deep=True)

    def update_order_status(self, order_id: str, status: OrderStatus) -> None:
        self._set("orders", [
            o.model_copy(update={"status": status}) if o.id == order_id else o
            for o in self._orders
        ])

    def delete_order(self, order_id: str) -> None:
        self._set("orders", [o for o in self._orders if o.id != order_id])

    # Catalog

    def add_product(self, product: Product) -> None:
        self._set("products", [product] + self._products)

    def update_product(self, product_id: str, changes: Dict[str, Any]) -> None:
        self._set("products", [
            p.model_copy(update=changes) if p.id == product_id else p
            for p in self._products
        ])

    def delete_product(self, product_id: str) -> None:
        self._set("products", [p for p in self._products if p.id != product_id])

    # Reviews

    def add_review(self, product_id: str, rating: int, comment: str) -> Optional[Review]:
        if self._user is None:
            return None
        review = Review(
            id=str(ObjectId()),
            product_id=product_id,
            user_id=self._user.id,
            user_name=self._user.name,
            rating=rating,
            comment=comment,
            date=self._clock(),
        )
        reviews = [review] + self._reviews
        self._set("reviews", reviews)
        self._set("products", recompute_ratings(self._products, reviews))
        return review.model_copy(deep=True)

    # Settings

    def update_store_settings(self, changes: Dict[str, Any]) -> None:
        self._set("settings", self._settings.model_copy(update=changes))
