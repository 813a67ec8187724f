#!/usr/bin/env python3
# Sales views, analytics and export formatting over plain order lists
import csv
import datetime as dt
import io
import json
from typing import Any, Dict, List, Optional

import pos_service as ps

PERIODS = ("today", "week", "month", "year", "all")


def _parse_ts(value: Any) -> Optional[dt.datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed.astimezone()


def _shift_months(day: dt.date, months: int) -> dt.date:
    index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    for candidate in (day.day, 30, 29, 28):
        try:
            return day.replace(year=year, month=month, day=min(day.day, candidate))
        except ValueError:
            continue
    return day.replace(year=year, month=month, day=28)


def status_of(order: Dict[str, Any]) -> str:
    return order.get("status") or "completed"


def filter_orders(orders: List[Dict[str, Any]], period: str = "all",
                  now: Optional[dt.datetime] = None) -> List[Dict[str, Any]]:
    """Orders inside ``period``, using the local clock like the till does."""
    if period not in PERIODS:
        raise ps.ValidationError(f"Period must be one of: {', '.join(PERIODS)}")
    if period == "all":
        return list(orders)
    now = (now or dt.datetime.now().astimezone()).astimezone()
    if period == "today":
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    elif period == "week":
        start = now - dt.timedelta(days=7)
    elif period == "month":
        start = dt.datetime.combine(_shift_months(now.date(), -1), dt.time(), tzinfo=now.tzinfo)
    else:
        start = dt.datetime.combine(_shift_months(now.date(), -12), dt.time(), tzinfo=now.tzinfo)
    out = []
    for order in orders:
        ts = _parse_ts(order.get("timestamp"))
        if ts is None:
            continue
        if period == "today" and ts.date() != now.date():
            continue
        if ts >= start:
            out.append(order)
    return out


def visible_orders(orders: List[Dict[str, Any]], include_deleted: bool = False) -> List[Dict[str, Any]]:
    rows = [o for o in orders if include_deleted or status_of(o) != "deleted"]
    return sorted(rows, key=lambda o: o.get("timestamp") or "", reverse=True)


def sales_summary(orders: List[Dict[str, Any]]) -> Dict[str, Any]:
    completed = [o for o in orders if status_of(o) == "completed"]
    returned = [o for o in orders if status_of(o) == "returned"]
    revenue = sum(o.get("total") or 0 for o in completed)
    count = len(completed)
    return {
        "revenue": revenue,
        "orders": count,
        "average": ps.round_half_up(revenue / count) if count else 0,
        "returned": len(returned),
        "returnedAmount": sum(o.get("total") or 0 for o in returned),
        "deleted": sum(1 for o in orders if status_of(o) == "deleted"),
    }


def _completed_items(orders: List[Dict[str, Any]]):
    for order in orders:
        if status_of(order) != "completed":
            continue
        for item in order.get("items") or []:
            yield item


def top_products(orders: List[Dict[str, Any]], limit: int = 5) -> List[Dict[str, Any]]:
    counts: Dict[str, Dict[str, Any]] = {}
    for item in _completed_items(orders):
        entry = counts.setdefault(item.get("productId"), {"productId": item.get("productId"),
                                                          "name": item.get("name"), "quantity": 0})
        entry["quantity"] += item.get("quantity") or 0
    return sorted(counts.values(), key=lambda e: e["quantity"], reverse=True)[:limit]


def revenue_by_items(orders: List[Dict[str, Any]], limit: int = 5) -> List[Dict[str, Any]]:
    revenue: Dict[str, Dict[str, Any]] = {}
    for item in _completed_items(orders):
        entry = revenue.setdefault(item.get("productId"), {"productId": item.get("productId"),
                                                           "name": item.get("name"), "revenue": 0})
        entry["revenue"] += (item.get("quantity") or 0) * (item.get("price") or 0)
    return sorted(revenue.values(), key=lambda e: e["revenue"], reverse=True)[:limit]


def revenue_by_categories(orders: List[Dict[str, Any]], data: Dict[str, Any], limit: int = 6) -> List[Dict[str, Any]]:
    names = {c.get("id"): c.get("name") for c in data.get("categories") or []}
    product_category = {p.get("id"): p.get("category") for p in data.get("products") or []}
    revenue: Dict[str, Dict[str, Any]] = {}
    for item in _completed_items(orders):
        category = item.get("category") or product_category.get(item.get("productId"))
        entry = revenue.setdefault(category, {"category": category,
                                              "name": names.get(category) or "Unknown", "revenue": 0})
        entry["revenue"] += (item.get("quantity") or 0) * (item.get("price") or 0)
    return sorted(revenue.values(), key=lambda e: e["revenue"], reverse=True)[:limit]


def analytics(orders: List[Dict[str, Any]], data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "summary": sales_summary(orders),
        "topProducts": top_products(orders),
        "revenueByItems": revenue_by_items(orders),
        "revenueByCategories": revenue_by_categories(orders, data),
    }


# ---------- EXPORT ----------
CSV_HEADER = "Order ID,Date,Items,Subtotal,Total,Payment Method,Order Type"


def _display_time(value: Any) -> str:
    ts = _parse_ts(value)
    return ts.strftime("%Y-%m-%d %H:%M:%S") if ts else str(value or "")


def export_sales_csv(orders: List[Dict[str, Any]], data: Dict[str, Any]) -> str:
    """CSV text for the given orders; strings quoted, numbers bare."""
    payment_names = {pm.get("id"): pm.get("name") for pm in data.get("paymentMethods") or []}
    type_names = {ot.get("id"): ot.get("name") for ot in data.get("orderTypes") or []}
    product_names = {p.get("id"): p.get("name") for p in data.get("products") or []}
    buf = io.StringIO()
    buf.write(CSV_HEADER + "\n")
    writer = csv.writer(buf, quoting=csv.QUOTE_NONNUMERIC, lineterminator="\n")
    for order in orders:
        items = "; ".join(
            f"{item.get('name') or product_names.get(item.get('productId')) or 'Unknown'} x{item.get('quantity')}"
            for item in order.get("items") or []
        )
        writer.writerow([
            str(order.get("id") or ""),
            _display_time(order.get("timestamp")),
            items,
            order.get("subtotal") or 0,
            order.get("total") or 0,
            payment_names.get(order.get("paymentMethod")) or "",
            type_names.get(order.get("orderType")) or "",
        ])
    return buf.getvalue()


def export_dataset_json(data: Dict[str, Any]) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2)


def receipt_lines(order: Dict[str, Any], data: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Display rows for a receipt; custom weight lines show the back-calculated amount."""
    categories = {c.get("id"): c for c in data.get("categories") or []}
    rows = []
    for item in order.get("items") or []:
        row = {
            "name": item.get("name"),
            "quantity": item.get("quantity"),
            "unit": None,
            "price": item.get("price"),
            "amount": (item.get("price") or 0) * (item.get("quantity") or 0),
        }
        if str(item.get("productId") or "").startswith(ps.CUSTOM_LINE_PREFIX):
            category = categories.get(item.get("category")) or {}
            base = category.get("basePrice") or 0
            if base > 0:
                row["quantity"] = round((item.get("price") or 0) / base, 3)
                row["unit"] = category.get("unit")
        rows.append(row)
    return rows
