"""
Read-side helpers for the shop and admin views: catalog filtering, order
queries and dashboard figures. Everything here works on snapshots and never
mutates the engine.
"""

import csv
import io
from datetime import date
from typing import Dict, List, Optional

from schemas import Order, Product, User, UserRole

WEEKDAYS = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]


def categories(products: List[Product]) -> List[str]:
    return sorted({p.category for p in products if p.category})


def featured_products(products: List[Product], limit: int = 3) -> List[Product]:
    return [p for p in products if p.is_featured][:limit]


def search_products(
    products: List[Product],
    category: Optional[str] = None,
    q: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    sort: Optional[str] = None,
) -> List[Product]:
    """Filter the catalog the way the shop page does.

    `category` "All" (any case) or None matches everything; `q` matches name
    or description case-insensitively; `sort` is one of price_asc,
    price_desc, rating_desc.
    """
    result = []
    needle = q.lower() if q else None
    for p in products:
        if category and category.lower() != "all" and p.category != category:
            continue
        if needle and needle not in p.name.lower() and needle not in p.description.lower():
            continue
        if min_price is not None and p.price < min_price:
            continue
        if max_price is not None and p.price > max_price:
            continue
        result.append(p)

    if sort == "price_asc":
        result.sort(key=lambda p: p.price)
    elif sort == "price_desc":
        result.sort(key=lambda p: p.price, reverse=True)
    elif sort == "rating_desc":
        result.sort(key=lambda p: p.rating, reverse=True)
    return result


def orders_for_user(orders: List[Order], user_id: str) -> List[Order]:
    return [o for o in orders if o.user_id == user_id]


def user_spend(orders: List[Order], user_id: str) -> float:
    return sum(o.total for o in orders if o.user_id == user_id)


def filter_orders(orders: List[Order], status: Optional[str] = None) -> List[Order]:
    if not status or status == "all":
        return list(orders)
    return [o for o in orders if o.status == status]


def dashboard_stats(orders: List[Order], users: List[User]) -> Dict[str, float]:
    total_revenue = sum(o.total for o in orders)
    total_orders = len(orders)
    return {
        "total_revenue": total_revenue,
        "total_orders": total_orders,
        "active_customers": len([u for u in users if u.role != UserRole.ADMIN]),
        "avg_order_value": total_revenue / total_orders if total_orders else 0,
    }


def users_joined_in_month(users: List[User], today: date) -> List[User]:
    prefix = today.strftime("%Y-%m")
    return [u for u in users if u.joined and u.joined.startswith(prefix)]


def high_spenders(orders: List[Order], users: List[User], threshold: float = 500) -> List[User]:
    """Users whose lifetime order total is strictly above ``threshold``."""
    return [u for u in users if user_spend(orders, u.id) > threshold]


def revenue_by_weekday(orders: List[Order]) -> List[Dict]:
    buckets = {day: 0.0 for day in WEEKDAYS}
    for o in orders:
        # isoweekday: Mon=1 .. Sun=7
        day = WEEKDAYS[o.date.astimezone().isoweekday() % 7]
        buckets[day] += o.total
    return [{"name": day, "value": value} for day, value in buckets.items()]


def top_products(orders: List[Order], limit: int = 5) -> List[Dict]:
    sales: Dict[str, Dict] = {}
    for o in orders:
        for item in o.items:
            entry = sales.setdefault(item.id, {
                "id": item.id,
                "name": item.name,
                "category": item.category,
                "image": item.image,
                "count": 0,
                "revenue": 0.0,
            })
            entry["count"] += item.quantity
            entry["revenue"] += item.price * item.quantity
    ranked = sorted(sales.values(), key=lambda e: e["revenue"], reverse=True)
    return ranked[:limit]


def orders_csv(orders: List[Order], users: List[User]) -> str:
    """CSV export for the admin order list; unknown customers show as "Unknown User"."""
    names = {u.id: u.name for u in users}
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(["Order ID", "Date", "Customer", "Total", "Status"])
    for o in orders:
        writer.writerow([
            o.id,
            o.date.date().isoformat(),
            names.get(o.user_id, "Unknown User"),
            f"{o.total:.2f}",
            o.status,
        ])
    return buf.getvalue()
