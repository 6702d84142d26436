"""Demo data the store starts from when nothing is persisted yet."""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from schemas import Product, Coupon, Review, Order, CartItem, StoreSettings

DEMO_PRODUCTS: List[dict] = [
    {
        "id": "1",
        "name": "Obsidian Truffle Cake",
        "description": "Dark chocolate ganache layered with espresso-infused sponge, finished with gold leaf.",
        "price": 85,
        "category": "Cakes",
        "image": "https://picsum.photos/seed/cake1/600/600",
        "is_featured": True,
        "stock": 12,
        "rating": 4.9,
    },
    {
        "id": "2",
        "name": "Champagne Strawberry Tart",
        "description": "Buttery sable crust filled with champagne pastry cream and fresh organic strawberries.",
        "price": 45,
        "category": "Tarts",
        "image": "https://picsum.photos/seed/tart1/600/600",
        "is_featured": True,
        "stock": 20,
        "rating": 4.7,
    },
    {
        "id": "3",
        "name": "Salted Caramel Macarons",
        "description": "A box of 12 premium macarons with sea salt caramel filling.",
        "price": 32,
        "category": "Macarons",
        "image": "https://picsum.photos/seed/macaron1/600/600",
        "is_featured": False,
        "stock": 50,
        "rating": 4.8,
    },
    {
        "id": "4",
        "name": "Velvet Rose Cupcake",
        "description": "Red velvet sponge with rose-water buttercream and crystallized petals.",
        "price": 8,
        "category": "Cupcakes",
        "image": "https://picsum.photos/seed/cupcake1/600/600",
        "is_featured": False,
        "stock": 100,
        "rating": 4.6,
    },
    {
        "id": "5",
        "name": "Gold Dust Eclair",
        "description": "Choux pastry filled with vanilla bean cream, topped with chocolate glaze and gold dust.",
        "price": 12,
        "category": "Pastries",
        "image": "https://picsum.photos/seed/eclair1/600/600",
        "is_featured": True,
        "stock": 15,
        "rating": 4.9,
    },
    {
        "id": "6",
        "name": "Midnight Cheesecake",
        "description": "Activated charcoal cheesecake with a blackberry coulis center.",
        "price": 65,
        "category": "Cakes",
        "image": "https://picsum.photos/seed/cheese1/600/600",
        "is_featured": False,
        "stock": 8,
        "rating": 4.8,
    },
]

DEMO_COUPONS: List[dict] = [
    {"code": "WELCOME10", "discount_type": "percentage", "value": 10, "min_order_value": 20},
    {"code": "LUXURY20", "discount_type": "flat", "value": 20, "min_order_value": 100},
]

DEMO_REVIEWS: List[dict] = [
    {
        "id": "1",
        "product_id": "1",
        "user_id": "mock-user-1",
        "user_name": "Sophie Laurent",
        "rating": 5,
        "comment": "Absolutely divine! The truffle texture is unmatched and the gold leaf adds such a luxurious touch.",
        "date": "2023-11-15T10:30:00Z",
    },
    {
        "id": "2",
        "product_id": "1",
        "user_id": "mock-user-2",
        "user_name": "James Bolton",
        "rating": 4,
        "comment": "Rich and decadent. Perfect for special occasions, though a bit heavy for dessert after a large meal.",
        "date": "2023-11-20T14:15:00Z",
    },
    {
        "id": "3",
        "product_id": "2",
        "user_id": "mock-user-3",
        "user_name": "Elena R.",
        "rating": 5,
        "comment": "The champagne cream is light and airy. Strawberries were incredibly fresh.",
        "date": "2023-12-01T09:00:00Z",
    },
]


def demo_products() -> List[Product]:
    return [Product(**p) for p in DEMO_PRODUCTS]


def demo_coupons() -> List[Coupon]:
    return [Coupon(**c) for c in DEMO_COUPONS]


def demo_reviews() -> List[Review]:
    return [Review(**r) for r in DEMO_REVIEWS]


def demo_orders(now: Optional[datetime] = None) -> List[Order]:
    """Two sample orders dated relative to ``now``."""
    now = now or datetime.now(timezone.utc)
    products = demo_products()

    def item(p: Product) -> CartItem:
        return CartItem(**p.model_dump(), quantity=1)

    return [
        Order(
            id="ord-123",
            user_id="admin-01",
            items=[item(products[0])],
            total=85,
            status="completed",
            date=now - timedelta(days=2),
        ),
        Order(
            id="ord-124",
            user_id="admin-01",
            items=[item(products[1]), item(products[2])],
            total=77,
            status="processing",
            date=now - timedelta(hours=5),
        ),
    ]


def default_settings() -> StoreSettings:
    return StoreSettings()
