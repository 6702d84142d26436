import os
import logging
from contextlib import asynccontextmanager
from typing import Callable, List, Optional

from bson import ObjectId
from fastapi import FastAPI, HTTPException, Header, Query, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

import analytics
from config import AppConfig, load_config
from database import db
from errors import AuthInProgressError, DuplicateCouponError, IdentityError
from identity import GoTrueIdentityService, IdentityService
from schemas import (
    AddToCartRequest, CartQuantityRequest, CheckoutRequest, Coupon, CouponRequest, CreateReview,
    LoginRequest, OrderStatusRequest, Product, ProductCreate, ProductUpdate, ProfileUpdate,
    RecoverRequest, SettingsUpdate, SignupRequest, UserRole,
)
from sessions import SessionRegistry
from storage import MemoryStorage, MongoStorage
from store import StoreEngine, StoreState

logger = logging.getLogger(__name__)


class OfflineIdentityService(IdentityService):
    """Used when IDENTITY_URL is not configured; only the local admin can sign in."""

    async def get_session(self):
        return None

    async def sign_in_with_password(self, email, password):
        raise IdentityError("Identity service is not configured", status_code=503)

    async def sign_up(self, email, password, full_name, redirect_to):
        raise IdentityError("Identity service is not configured", status_code=503)

    async def sign_out(self):
        self._emit("SIGNED_OUT", None)

    async def reset_password_for_email(self, email, redirect_to):
        raise IdentityError("Identity service is not configured", status_code=503)


def identity_factory(config: AppConfig) -> Callable[[], IdentityService]:
    if config.identity_url:
        return lambda: GoTrueIdentityService(config.identity_url, config.identity_anon_key or "")
    logger.warning("IDENTITY_URL not set; only the local administrator can sign in")
    return OfflineIdentityService


def build_registry() -> SessionRegistry:
    config = load_config()
    storage = MongoStorage(db) if db is not None else MemoryStorage()
    state = StoreState(storage, config=config)
    return SessionRegistry(state, identity_factory(config), config.jwt_secret)


@asynccontextmanager
async def lifespan(app: FastAPI):
    registry = build_registry()
    await registry.start()
    app.state.sessions = registry
    yield
    registry.dispose()


app = FastAPI(title="Frosty Bite Store API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def bearer_token(authorization: Optional[str] = Header(None)) -> Optional[str]:
    if not authorization:
        return None
    return authorization.replace("Bearer ", "").strip() or None


def get_engine(token: Optional[str] = Depends(bearer_token),
               registry: SessionRegistry = Depends(get_registry)) -> StoreEngine:
    """The caller's session engine; callers without a token browse anonymously."""
    if token is None:
        return registry.anonymous
    engine = registry.resolve(token)
    if engine is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return engine


def get_session_engine(token: Optional[str] = Depends(bearer_token),
                       engine: StoreEngine = Depends(get_engine)) -> StoreEngine:
    if token is None:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    return engine


def require_user(engine: StoreEngine = Depends(get_engine)):
    user = engine.user
    if user is None:
        raise HTTPException(status_code=401, detail="Not signed in")
    return user


def require_admin(engine: StoreEngine = Depends(get_engine)):
    user = engine.user
    if user is None or user.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Admin only")
    return user


def identity_failure(e: IdentityError, default_status: int) -> HTTPException:
    status = e.status_code if 400 <= e.status_code < 600 else default_status
    return HTTPException(status_code=status, detail=e.message)


@app.get("/")
def read_root(engine: StoreEngine = Depends(get_engine)):
    return {"message": f"{engine.settings.store_name} store is running"}


# Auth

@app.post("/session")
async def open_session(registry: SessionRegistry = Depends(get_registry)):
    token, _ = await registry.open()
    return {"token": token}


@app.post("/auth/login")
async def login(payload: LoginRequest, token: Optional[str] = Depends(bearer_token),
                engine: StoreEngine = Depends(get_engine),
                registry: SessionRegistry = Depends(get_registry)):
    if token is None:
        token, engine = await registry.open()
    try:
        await engine.login(payload.email, payload.password)
    except AuthInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except IdentityError as e:
        raise identity_failure(e, 401)
    return {"token": token, "user": engine.user}


@app.post("/auth/signup")
async def signup(payload: SignupRequest, engine: StoreEngine = Depends(get_engine)):
    try:
        await engine.signup(payload.name, payload.email, payload.password)
    except AuthInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except IdentityError as e:
        raise identity_failure(e, 400)
    return {"ok": True, "message": "Check your email to confirm your account"}


@app.post("/auth/logout")
async def logout(engine: StoreEngine = Depends(get_engine)):
    try:
        await engine.logout()
    except AuthInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except IdentityError as e:
        raise identity_failure(e, 400)
    return {"ok": True}


@app.post("/auth/recover")
async def recover(payload: RecoverRequest, engine: StoreEngine = Depends(get_engine)):
    try:
        await engine.request_password_reset(payload.email)
    except AuthInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except IdentityError as e:
        raise identity_failure(e, 400)
    return {"ok": True}


@app.get("/me")
def me(user=Depends(require_user), engine: StoreEngine = Depends(get_engine)):
    orders = analytics.orders_for_user(engine.orders, user.id)
    return {"user": user, "orders": orders, "total_spent": analytics.user_spend(orders, user.id)}


@app.put("/me")
def update_me(payload: ProfileUpdate, user=Depends(require_user), engine: StoreEngine = Depends(get_engine)):
    engine.update_user_profile(payload.model_dump(exclude_none=True))
    return engine.user


# Catalog

@app.get("/categories")
def list_categories(engine: StoreEngine = Depends(get_engine)):
    return analytics.categories(engine.products)


@app.get("/products", response_model=List[Product])
def list_products(
    category: Optional[str] = None,
    q: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    sort: Optional[str] = Query(None, description="price_asc|price_desc|rating_desc"),
    featured: bool = False,
    engine: StoreEngine = Depends(get_engine),
):
    products = engine.products
    if featured:
        return analytics.featured_products(products)
    return analytics.search_products(products, category=category, q=q,
                                     min_price=min_price, max_price=max_price, sort=sort)


@app.get("/products/{product_id}")
def get_product(product_id: str, engine: StoreEngine = Depends(get_engine)):
    prod = engine.get_product(product_id)
    if not prod:
        raise HTTPException(status_code=404, detail="Product not found")
    reviews = [r for r in engine.reviews if r.product_id == product_id]
    return {**prod.model_dump(), "reviews_count": len(reviews)}


@app.post("/admin/products", response_model=Product)
def create_product(payload: ProductCreate, admin=Depends(require_admin), engine: StoreEngine = Depends(get_engine)):
    data = payload.model_dump()
    data["id"] = data["id"] or str(ObjectId())
    if engine.get_product(data["id"]):
        raise HTTPException(status_code=400, detail="Product id already exists")
    product = Product(**data)
    engine.add_product(product)
    return product


@app.put("/admin/products/{product_id}", response_model=Product)
def update_product(product_id: str, payload: ProductUpdate, admin=Depends(require_admin),
                   engine: StoreEngine = Depends(get_engine)):
    updates = payload.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No updates provided")
    if not engine.get_product(product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    engine.update_product(product_id, updates)
    return engine.get_product(product_id)


@app.delete("/admin/products/{product_id}")
def delete_product(product_id: str, admin=Depends(require_admin), engine: StoreEngine = Depends(get_engine)):
    if not engine.get_product(product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    engine.delete_product(product_id)
    return {"deleted": True}


# Cart

def cart_view(engine: StoreEngine):
    return {"items": engine.cart, "total": engine.cart_total, "count": engine.cart_count}


@app.get("/cart")
def get_cart(engine: StoreEngine = Depends(get_session_engine)):
    return cart_view(engine)


@app.post("/cart/add")
def add_to_cart(payload: AddToCartRequest, engine: StoreEngine = Depends(get_session_engine)):
    prod = engine.get_product(payload.product_id)
    if not prod:
        raise HTTPException(status_code=404, detail="Product not found")
    engine.add_to_cart(prod, payload.quantity)
    return cart_view(engine)


@app.put("/cart/{product_id}")
def update_cart_item(product_id: str, payload: CartQuantityRequest, engine: StoreEngine = Depends(get_session_engine)):
    engine.update_cart_quantity(product_id, payload.quantity)
    return cart_view(engine)


@app.delete("/cart/{product_id}")
def remove_cart_item(product_id: str, engine: StoreEngine = Depends(get_session_engine)):
    engine.remove_from_cart(product_id)
    return cart_view(engine)


@app.post("/cart/coupon")
def apply_coupon(payload: CouponRequest, engine: StoreEngine = Depends(get_session_engine)):
    check = engine.check_coupon(payload.code)
    if check.reason != "ok":
        raise HTTPException(status_code=400, detail="Invalid or expired coupon code")
    return {"code": payload.code, "discount": check.discount, "total": engine.cart_total - check.discount}


@app.post("/checkout")
def checkout(payload: CheckoutRequest, user=Depends(require_user), engine: StoreEngine = Depends(get_engine)):
    if not engine.cart:
        raise HTTPException(status_code=400, detail="Cart is empty")
    order = engine.place_order(coupon_code=payload.coupon_code)
    return {"ok": True, "order": order}


# Orders

@app.get("/orders")
def get_orders(user=Depends(require_user), engine: StoreEngine = Depends(get_engine)):
    return analytics.orders_for_user(engine.orders, user.id)


@app.get("/admin/orders")
def admin_orders(status: Optional[str] = None, admin=Depends(require_admin),
                 engine: StoreEngine = Depends(get_engine)):
    return analytics.filter_orders(engine.orders, status)


@app.get("/admin/orders/export", response_class=PlainTextResponse)
def export_orders(status: Optional[str] = None, admin=Depends(require_admin),
                  engine: StoreEngine = Depends(get_engine)):
    orders = analytics.filter_orders(engine.orders, status)
    return PlainTextResponse(
        analytics.orders_csv(orders, engine.users),
        media_type="text/csv",
        headers={"Content-Disposition": "attachment; filename=frosty_bite_orders.csv"},
    )


@app.put("/admin/orders/{order_id}/status")
def set_order_status(order_id: str, payload: OrderStatusRequest, admin=Depends(require_admin),
                     engine: StoreEngine = Depends(get_engine)):
    if not any(o.id == order_id for o in engine.orders):
        raise HTTPException(status_code=404, detail="Order not found")
    engine.update_order_status(order_id, payload.status)
    return {"updated": True}


@app.delete("/admin/orders/{order_id}")
def delete_order(order_id: str, admin=Depends(require_admin), engine: StoreEngine = Depends(get_engine)):
    if not any(o.id == order_id for o in engine.orders):
        raise HTTPException(status_code=404, detail="Order not found")
    engine.delete_order(order_id)
    return {"deleted": True}


# Coupons

@app.get("/admin/coupons", response_model=List[Coupon])
def list_coupons(admin=Depends(require_admin), engine: StoreEngine = Depends(get_engine)):
    return engine.coupons


@app.post("/admin/coupons", response_model=Coupon)
def create_coupon(payload: Coupon, admin=Depends(require_admin), engine: StoreEngine = Depends(get_engine)):
    try:
        engine.add_coupon(payload)
    except DuplicateCouponError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return payload


@app.delete("/admin/coupons/{code}")
def delete_coupon(code: str, admin=Depends(require_admin), engine: StoreEngine = Depends(get_engine)):
    engine.delete_coupon(code)
    return {"deleted": True}


# Reviews

@app.get("/reviews")
def get_reviews(product_id: str, engine: StoreEngine = Depends(get_engine)):
    return [r for r in engine.reviews if r.product_id == product_id]


@app.post("/reviews")
def post_review(payload: CreateReview, user=Depends(require_user), engine: StoreEngine = Depends(get_engine)):
    if not engine.get_product(payload.product_id):
        raise HTTPException(status_code=404, detail="Product not found")
    review = engine.add_review(payload.product_id, payload.rating, payload.comment)
    return {"ok": True, "review": review, "rating": engine.get_product(payload.product_id).rating}


# Settings & users

@app.get("/settings")
def get_settings(engine: StoreEngine = Depends(get_engine)):
    return engine.settings


@app.put("/admin/settings")
def update_settings(payload: SettingsUpdate, admin=Depends(require_admin), engine: StoreEngine = Depends(get_engine)):
    engine.update_store_settings(payload.model_dump(exclude_none=True))
    return engine.settings


@app.get("/admin/users")
def list_users(admin=Depends(require_admin), engine: StoreEngine = Depends(get_engine)):
    orders = engine.orders
    return [{**u.model_dump(), "total_spent": analytics.user_spend(orders, u.id)} for u in engine.users]


@app.delete("/admin/users/{user_id}")
def delete_user(user_id: str, admin=Depends(require_admin), engine: StoreEngine = Depends(get_engine)):
    target = next((u for u in engine.users if u.id == user_id), None)
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    if target.role == UserRole.ADMIN:
        raise HTTPException(status_code=400, detail="Cannot delete an administrator account")
    engine.delete_user(user_id)
    return {"deleted": True}


@app.get("/admin/stats")
def admin_stats(admin=Depends(require_admin), engine: StoreEngine = Depends(get_engine)):
    orders = engine.orders
    users = engine.users
    today = engine.state.clock().astimezone().date()
    return {
        **analytics.dashboard_stats(orders, users),
        "revenue_by_day": analytics.revenue_by_weekday(orders),
        "top_products": analytics.top_products(orders),
        "products": len(engine.products),
        "new_users_this_month": len(analytics.users_joined_in_month(users, today)),
        "high_spenders": len(analytics.high_spenders(orders, users)),
    }


@app.get("/test")
def test_database(engine: StoreEngine = Depends(get_engine)):
    response = {
        "backend": "✅ Running",
        "storage": type(engine.storage).__name__,
        "identity": type(engine.identity).__name__,
        "initialized": engine.initialized,
        "database": "❌ Not Available",
    }
    try:
        if db is not None:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
    except Exception as e:
        response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
    response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
