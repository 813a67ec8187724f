#!/usr/bin/env python3
# POS core: catalog, cart and order ledger over one in-memory dataset
import copy
import datetime as dt
import logging
import math
import re
import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

ORDER_PREFIX = "ORD-"
ORDER_STATUSES = ("completed", "returned", "deleted")
STATUS_STAMP_FIELD = {"returned": "returnedAt", "deleted": "deletedAt"}
UNITS = ("pcs", "kg", "gram", "ml", "liter")
MEASURED_UNITS = {"kg", "gram", "ml", "liter"}
CUSTOM_LINE_PREFIX = "custom-"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "currency": "PKR",
    "receiptWidth": 80,
    "autoPrint": False,
    "showTax": False,
    "nextOrderNumber": 1,
    "thermalWidth": 80,
    "printOrientation": "portrait",
    "printMargin": 0,
    "printCopies": 1,
}


class PosError(Exception):
    """Base for POS errors whose message is safe to show at the till."""
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PosError):
    """Rejected user input. Nothing was changed."""


class InvariantError(PosError):
    """The operation would break a catalog or ledger invariant. Nothing was changed."""


def iso_now() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def default_catalog() -> Dict[str, List[Dict[str, Any]]]:
    return {
        "categories": [
            {"id": "biryanis", "name": "Biryanis", "color": "#DC2626", "emoji": "🍛", "unit": "pcs", "basePrice": 0},
            {"id": "karahi", "name": "Karahi & Handi", "color": "#EA580C", "emoji": "🍲", "unit": "pcs", "basePrice": 0},
            {"id": "bbq", "name": "BBQ & Grilled", "color": "#D97706", "emoji": "🍖", "unit": "pcs", "basePrice": 0},
            {"id": "breads", "name": "Breads & Naan", "color": "#92400E", "emoji": "🍞", "unit": "pcs", "basePrice": 0},
            {"id": "rice", "name": "Rice & Pulao", "color": "#059669", "emoji": "🍚", "unit": "pcs", "basePrice": 0},
            {"id": "drinks", "name": "Beverages", "color": "#2563EB", "emoji": "🥤", "unit": "pcs", "basePrice": 0},
            {"id": "sweets", "name": "Sweets", "color": "#DB2777", "emoji": "🍮", "unit": "kg", "basePrice": 1200},
        ],
        "products": [
            {"id": "chicken_biryani", "name": "Chicken Biryani", "price": 320, "category": "biryanis",
             "description": "Aromatic basmati rice with tender chicken and traditional spices"},
            {"id": "beef_biryani", "name": "Beef Biryani", "price": 380, "category": "biryanis",
             "description": "Rich beef biryani with slow-cooked meat and fragrant rice"},
            {"id": "mutton_biryani", "name": "Mutton Biryani", "price": 420, "category": "biryanis",
             "description": "Traditional mutton biryani with tender goat meat"},
            {"id": "chicken_karahi", "name": "Chicken Karahi", "price": 450, "category": "karahi",
             "description": "Spicy chicken karahi cooked in traditional wok with tomatoes"},
            {"id": "mutton_karahi", "name": "Mutton Karahi", "price": 550, "category": "karahi",
             "description": "Tender mutton pieces in rich tomato-based curry"},
            {"id": "chicken_handi", "name": "Chicken Handi", "price": 480, "category": "karahi",
             "description": "Creamy chicken curry cooked in clay pot"},
            {"id": "gulab_jamun_half", "name": "Gulab Jamun 500g", "price": 600, "quantity": 0.5, "category": "sweets",
             "description": ""},
        ],
    }


def default_dataset() -> Dict[str, Any]:
    """Built-in dataset used when no remote, cache or bundled file is available."""
    catalog = default_catalog()
    return {
        "store": {
            "name": "Restaurant POS",
            "address": "",
            "phone": "",
            "email": "",
            "taxRate": 0,
            "receiptHeader": "Thank you for dining with us!",
            "receiptFooter": "",
        },
        "categories": catalog["categories"],
        "products": catalog["products"],
        "paymentMethods": [
            {"id": "cash", "name": "Cash", "emoji": "💵"},
            {"id": "card", "name": "Card", "emoji": "💳"},
            {"id": "easypaisa", "name": "EasyPaisa", "emoji": "📱"},
            {"id": "jazzcash", "name": "JazzCash", "emoji": "📱"},
        ],
        "orderTypes": [
            {"id": "dinein", "name": "Dine-in", "emoji": "🍽️"},
            {"id": "takeaway", "name": "Takeaway", "emoji": "🥡"},
            {"id": "delivery", "name": "Delivery", "emoji": "🚚"},
        ],
        "orders": [],
        "settings": dict(DEFAULT_SETTINGS),
    }


# ---------- ORDER IDS + MONEY ----------
_ORDER_ID_RE = re.compile(r"^ORD-(\d+)$")


def format_order_id(number: int) -> str:
    return f"{ORDER_PREFIX}{int(number):03d}"


def parse_order_number(order_id: Any) -> Optional[int]:
    if not isinstance(order_id, str):
        return None
    m = _ORDER_ID_RE.match(order_id.strip())
    return int(m.group(1)) if m else None


def _number(value: Any, field: str) -> float:
    if isinstance(value, bool) or value in (None, ""):
        raise ValidationError(f"{field} is required")
    try:
        num = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not math.isfinite(num):
        raise ValidationError(f"{field} must be a number")
    return int(num) if num.is_integer() else num


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def counter_value(value: Any) -> Optional[int]:
    """Whole-number counter from a stored setting, tolerating "12" and 12.0."""
    if isinstance(value, bool) or value in (None, ""):
        return None
    try:
        num = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(num) or not num.is_integer() or num < 1:
        return None
    return int(num)


def lines_total(lines: List[Dict[str, Any]]):
    return sum(l["price"] * l["quantity"] for l in lines)


def month_key(timestamp: Any) -> Optional[str]:
    """'YYYY-MM' for an ISO timestamp, or None when it cannot be parsed."""
    if not isinstance(timestamp, str) or len(timestamp) < 7:
        return None
    try:
        parsed = dt.datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(dt.timezone.utc)
    return parsed.strftime("%Y-%m")


# ---------- STATE HOLDER ----------
class PosState:
    """Explicit owner of the dataset, the session cart and pending checkouts.

    All mutations go through the services below while holding ``lock``.
    ``on_change`` receives a deep copy of the dataset after each committed
    mutation; the sync layer plugs persistence in there.
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None,
                 on_change: Optional[Callable[[Dict[str, Any]], Any]] = None):
        self.data: Dict[str, Any] = data if data is not None else default_dataset()
        self.cart: List[Dict[str, Any]] = []
        self.pending: Dict[str, Dict[str, Any]] = {}
        self.lock = threading.RLock()
        self.on_change = on_change

    @property
    def settings(self) -> Dict[str, Any]:
        return self.data.setdefault("settings", {})

    @property
    def orders(self) -> List[Dict[str, Any]]:
        return self.data.setdefault("orders", [])

    def snapshot(self) -> Dict[str, Any]:
        with self.lock:
            return copy.deepcopy(self.data)

    def replace(self, data: Dict[str, Any]):
        with self.lock:
            self.data = data

    def changed(self):
        """Hand a snapshot to the persistence hook; failures there never undo state."""
        if self.on_change is None:
            return None
        with self.lock:
            snap = copy.deepcopy(self.data)
            try:
                return self.on_change(snap)
            except Exception:
                logger.exception("Persisting POS dataset failed")
                return None


# ---------- CATALOG ----------
def category_slug(name: str) -> str:
    return re.sub(r"\s+", "_", name.strip().lower())


def product_slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", name.lower())[:20] or "item"


class CatalogService:
    def __init__(self, state: PosState):
        self.state = state

    @property
    def categories(self) -> List[Dict[str, Any]]:
        return self.state.data.setdefault("categories", [])

    @property
    def products(self) -> List[Dict[str, Any]]:
        return self.state.data.setdefault("products", [])

    def get_category(self, category_id: str) -> Optional[Dict[str, Any]]:
        return next((c for c in self.categories if c.get("id") == category_id), None)

    def get_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        return next((p for p in self.products if p.get("id") == product_id), None)

    def payment_method_ids(self) -> List[str]:
        return [pm.get("id") for pm in self.state.data.get("paymentMethods") or []]

    def order_type_ids(self) -> List[str]:
        return [ot.get("id") for ot in self.state.data.get("orderTypes") or []]

    def products_in(self, category_id: str) -> List[Dict[str, Any]]:
        return [p for p in self.products if p.get("category") == category_id]

    def _check_unit(self, unit: Any) -> str:
        unit = unit or "pcs"
        if isinstance(unit, str):
            unit = unit.strip().lower()
        if unit not in UNITS:
            raise ValidationError(f"Unit must be one of: {', '.join(UNITS)}")
        return unit

    def _check_base_price(self, value: Any):
        price = _number(0 if value in (None, "") else value, "Base price")
        if price < 0:
            raise ValidationError("Base price cannot be negative")
        return price

    def _name_taken(self, name: str, skip_id: Optional[str] = None) -> bool:
        lowered = name.lower()
        return any(
            (c.get("name") or "").lower() == lowered and c.get("id") != skip_id
            for c in self.categories
        )

    def add_category(self, name: str, color: str = "#EF4444", emoji: str = "", unit: str = "pcs",
                     base_price: Any = 0) -> Dict[str, Any]:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Please enter a category name")
        unit = self._check_unit(unit)
        base_price = self._check_base_price(base_price)
        with self.state.lock:
            if self._name_taken(name):
                raise InvariantError("Category already exists")
            category_id = category_slug(name)
            if self.get_category(category_id):
                raise InvariantError("Category already exists")
            category = {
                "id": category_id,
                "name": name,
                "color": color or "#EF4444",
                "emoji": (emoji or "").strip() or "📦",
                "unit": unit,
                "basePrice": base_price,
            }
            self.categories.append(category)
            self.state.changed()
            return dict(category)

    def edit_category(self, category_id: str, **changes) -> Dict[str, Any]:
        with self.state.lock:
            category = self.get_category(category_id)
            if category is None:
                raise ValidationError("Category not found")
            updates: Dict[str, Any] = {}
            if "name" in changes:
                name = (changes["name"] or "").strip()
                if not name:
                    raise ValidationError("Please enter a category name")
                if self._name_taken(name, skip_id=category_id):
                    raise InvariantError("Category already exists")
                updates["name"] = name
            if "color" in changes:
                if not changes["color"]:
                    raise ValidationError("Please choose a color")
                updates["color"] = changes["color"]
            if "emoji" in changes:
                updates["emoji"] = (changes["emoji"] or "").strip() or "📦"
            if "unit" in changes:
                updates["unit"] = self._check_unit(changes["unit"])
            if "basePrice" in changes:
                updates["basePrice"] = self._check_base_price(changes["basePrice"])
            category.update(updates)
            if "basePrice" in updates or "unit" in updates:
                self._reprice_measured(category)
            self.state.changed()
            return dict(category)

    def _reprice_measured(self, category: Dict[str, Any]):
        if category.get("unit") not in MEASURED_UNITS:
            return
        base = category.get("basePrice") or 0
        for product in self.products_in(category["id"]):
            qty = product.get("quantity")
            if isinstance(qty, (int, float)) and qty > 0:
                product["price"] = round_half_up(base * qty)

    def delete_category(self, category_id: str) -> Dict[str, Any]:
        with self.state.lock:
            category = self.get_category(category_id)
            if category is None:
                raise ValidationError("Category not found")
            in_use = len(self.products_in(category_id))
            if in_use:
                raise InvariantError(f"Cannot delete category with {in_use} product(s)")
            self.state.data["categories"] = [c for c in self.categories if c.get("id") != category_id]
            self.state.changed()
            return dict(category)

    def _unique_product_id(self, name: str) -> str:
        base = product_slug(name)
        candidate, n = base, 2
        while self.get_product(candidate):
            candidate = f"{base}_{n}"
            n += 1
        return candidate

    def _priced_fields(self, category: Dict[str, Any], price: Any, quantity: Any) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if category.get("unit") in MEASURED_UNITS and quantity not in (None, ""):
            qty = _number(quantity, "Quantity")
            if qty <= 0:
                raise ValidationError("Quantity must be greater than zero")
            out["quantity"] = qty
            out["price"] = round_half_up((category.get("basePrice") or 0) * qty)
            return out
        value = _number(price, "Price")
        if value <= 0:
            raise ValidationError("Price must be greater than zero")
        out["price"] = value
        return out

    def add_product(self, name: str, category: str, price: Any = None, quantity: Any = None,
                    description: str = "") -> Dict[str, Any]:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Please enter a product name")
        with self.state.lock:
            cat = self.get_category(category)
            if cat is None:
                raise ValidationError("Please select a category")
            product = {"id": self._unique_product_id(name), "name": name, "category": category}
            product.update(self._priced_fields(cat, price, quantity))
            product["description"] = description or ""
            self.products.append(product)
            self.state.changed()
            return dict(product)

    def update_product(self, product_id: str, **changes) -> Dict[str, Any]:
        with self.state.lock:
            product = self.get_product(product_id)
            if product is None:
                raise ValidationError("Product not found")
            updates: Dict[str, Any] = {}
            if "name" in changes:
                name = (changes["name"] or "").strip()
                if not name:
                    raise ValidationError("Please enter a product name")
                updates["name"] = name
            if "category" in changes or "price" in changes or "quantity" in changes:
                category_id = changes.get("category", product.get("category"))
                cat = self.get_category(category_id)
                if cat is None:
                    raise ValidationError("Please select a category")
                price = changes.get("price", product.get("price"))
                quantity = changes.get("quantity", product.get("quantity"))
                updates["category"] = category_id
                updates.update(self._priced_fields(cat, price, quantity))
                if "quantity" not in updates:
                    product.pop("quantity", None)
            if "description" in changes:
                updates["description"] = changes["description"] or ""
            product.update(updates)
            self.state.changed()
            return dict(product)

    def delete_product(self, product_id: str) -> Dict[str, Any]:
        with self.state.lock:
            product = self.get_product(product_id)
            if product is None:
                raise ValidationError("Product not found")
            self.state.data["products"] = [p for p in self.products if p.get("id") != product_id]
            self.state.changed()
            return dict(product)

    def update_store(self, **fields) -> Dict[str, Any]:
        with self.state.lock:
            store = self.state.data.setdefault("store", {})
            store.update({k: v for k, v in fields.items() if v is not None})
            self.state.changed()
            return dict(store)

    def update_settings(self, **fields) -> Dict[str, Any]:
        with self.state.lock:
            settings = self.state.settings
            clean = dict(fields)
            if "nextOrderNumber" in fields:
                wanted = _number(fields["nextOrderNumber"], "Next order number")
                if not isinstance(wanted, int):
                    raise ValidationError("Next order number must be a whole number")
                if wanted < (counter_value(settings.get("nextOrderNumber")) or 1):
                    raise InvariantError("The order number sequence cannot be moved backwards")
                clean["nextOrderNumber"] = wanted
            for key in ("printCopies", "thermalWidth"):
                if key in fields:
                    value = _number(fields[key], key)
                    if value <= 0:
                        raise ValidationError(f"{key} must be greater than zero")
                    clean[key] = value
            settings.update(clean)
            self.state.changed()
            return dict(settings)


# ---------- CART ----------
class CartService:
    """Session cart. Lines are snapshots and are never persisted."""

    def __init__(self, state: PosState, catalog: CatalogService):
        self.state = state
        self.catalog = catalog

    def lines(self) -> List[Dict[str, Any]]:
        with self.state.lock:
            return copy.deepcopy(self.state.cart)

    def subtotal(self):
        with self.state.lock:
            return lines_total(self.state.cart)

    def add(self, product: Dict[str, Any]) -> Dict[str, Any]:
        with self.state.lock:
            for line in self.state.cart:
                if line["productId"] == product["id"]:
                    line["quantity"] += 1
                    return dict(line)
            category = self.catalog.get_category(product.get("category")) or {}
            line = {
                "productId": product["id"],
                "name": product.get("name", product["id"]),
                "price": product.get("price", 0),
                "quantity": 1,
                "category": product.get("category"),
                "categoryColor": category.get("color"),
            }
            self.state.cart.append(line)
            return dict(line)

    def add_product_id(self, product_id: str) -> Dict[str, Any]:
        product = self.catalog.get_product(product_id)
        if product is None:
            raise ValidationError("Product not found")
        return self.add(product)

    def add_custom_line(self, category_id: str, manual_price: Any) -> Dict[str, Any]:
        price = _number(manual_price, "Price")
        if price <= 0:
            raise ValidationError("Price must be greater than zero")
        with self.state.lock:
            category = self.catalog.get_category(category_id)
            if category is None:
                raise ValidationError("Please select a category")
            token = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:4]}"
            line = {
                "productId": CUSTOM_LINE_PREFIX + token,
                "name": category.get("name", category_id),
                "price": price,
                "quantity": 1,
                "category": category_id,
                "categoryColor": category.get("color"),
                "custom": True,
                "unit": category.get("unit", "pcs"),
            }
            self.state.cart.append(line)
            return dict(line)

    def adjust_quantity(self, line_index: int, delta: int) -> Optional[Dict[str, Any]]:
        """Apply ``delta``; returns the line, or None when it dropped out of the cart."""
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise ValidationError("Quantity change must be a whole number")
        with self.state.lock:
            line = self._line(line_index)
            line["quantity"] += delta
            if line["quantity"] <= 0:
                del self.state.cart[line_index]
                return None
            return dict(line)

    def remove_line(self, line_index: int) -> Dict[str, Any]:
        with self.state.lock:
            self._line(line_index)
            return self.state.cart.pop(line_index)

    def clear(self):
        with self.state.lock:
            self.state.cart.clear()

    def _line(self, line_index: int) -> Dict[str, Any]:
        if not isinstance(line_index, int) or not 0 <= line_index < len(self.state.cart):
            raise ValidationError("Cart line not found")
        return self.state.cart[line_index]


# ---------- LEDGER ----------
class LedgerService:
    def __init__(self, state: PosState, catalog: CatalogService, cart: CartService):
        self.state = state
        self.catalog = catalog
        self.cart = cart

    def _highest_assigned(self) -> int:
        numbers = [parse_order_number(o.get("id")) for o in self.state.orders]
        numbers.extend(parse_order_number(oid) for oid in self.state.pending)
        return max((n for n in numbers if n is not None), default=0)

    def next_order_id(self) -> str:
        """Draw the next id and bump the counter before any I/O happens."""
        with self.state.lock:
            settings = self.state.settings
            number = counter_value(settings.get("nextOrderNumber")) or 1
            floor = self._highest_assigned() + 1
            if number < floor:
                logger.warning("nextOrderNumber %s is behind assigned ids; advancing to %s", number, floor)
                number = floor
            settings["nextOrderNumber"] = number + 1
            return format_order_id(number)

    def commit_order(self, payment_method: Optional[str], order_type: Optional[str]) -> Dict[str, Any]:
        """Build the order for the current cart and hold it until it is confirmed."""
        if not payment_method:
            raise ValidationError("Please select a payment method")
        if not order_type:
            raise ValidationError("Please select an order type")
        with self.state.lock:
            if not self.state.cart:
                raise ValidationError("Cart is empty")
            known_methods = self.catalog.payment_method_ids()
            if known_methods and payment_method not in known_methods:
                raise ValidationError(f"Unknown payment method: {payment_method}")
            known_types = self.catalog.order_type_ids()
            if known_types and order_type not in known_types:
                raise ValidationError(f"Unknown order type: {order_type}")
            items = [
                {
                    "productId": line["productId"],
                    "name": line["name"],
                    "quantity": line["quantity"],
                    "price": line["price"],
                    "category": line["category"],
                }
                for line in self.state.cart
            ]
            subtotal = lines_total(items)
            order = {
                "id": self.next_order_id(),
                "timestamp": iso_now(),
                "items": items,
                "subtotal": subtotal,
                "tax": 0,
                "total": subtotal,
                "paymentMethod": payment_method,
                "orderType": order_type,
                "status": "completed",
            }
            # one session cart, so one open checkout; abandoned numbers stay consumed
            for stale_id in list(self.state.pending):
                del self.state.pending[stale_id]
                logger.info("Pending order %s superseded by %s", stale_id, order["id"])
            self.state.pending[order["id"]] = order
            self.state.changed()
            return copy.deepcopy(order)

    def pending_orders(self) -> List[Dict[str, Any]]:
        with self.state.lock:
            return copy.deepcopy(list(self.state.pending.values()))

    def confirm_order(self, order_or_id) -> bool:
        """Append a pending order to the ledger. Returns False if it was already committed."""
        order_id = order_or_id.get("id") if isinstance(order_or_id, dict) else order_or_id
        with self.state.lock:
            if any(o.get("id") == order_id for o in self.state.orders):
                self.state.pending.pop(order_id, None)
                logger.info("Order %s already committed; ignoring repeated confirm", order_id)
                return False
            order = self.state.pending.get(order_id)
            if order is None:
                raise ValidationError("No order to confirm. Please create an order first.")
            if not order["items"] or order["total"] != lines_total(order["items"]):
                raise InvariantError(f"Order {order_id} is inconsistent and cannot be saved")
            self.state.orders.append(order)
            del self.state.pending[order_id]
            self.state.cart.clear()
            logger.info("Order %s committed (total=%s)", order_id, order["total"])
            self.state.changed()
            return True

    def cancel_pending_order(self, order_or_id) -> bool:
        """Drop a pending order. Its sequence number stays consumed."""
        order_id = order_or_id.get("id") if isinstance(order_or_id, dict) else order_or_id
        with self.state.lock:
            dropped = self.state.pending.pop(order_id, None)
        if dropped is not None:
            logger.info("Pending order %s cancelled; number not reclaimed", order_id)
        return dropped is not None

    def set_status(self, order_id: str, new_status: str) -> Dict[str, Any]:
        field = STATUS_STAMP_FIELD.get(new_status)
        if field is None:
            raise ValidationError(f"Unsupported status: {new_status}")
        with self.state.lock:
            matches = [o for o in self.state.orders if o.get("id") == order_id]
            if not matches:
                raise ValidationError("Order not found")
            completed = [o for o in matches if (o.get("status") or "completed") == "completed"]
            if not completed:
                raise InvariantError(f"Order {order_id} is already {matches[-1].get('status')}")
            if len(matches) > 1:
                logger.warning("Order id %s appears %d times in the ledger", order_id, len(matches))
            stamp = iso_now()
            for order in completed:
                order["status"] = new_status
                order[field] = stamp
            self.state.changed()
            return copy.deepcopy(completed[-1])

    def duplicate_ids(self) -> Dict[str, int]:
        with self.state.lock:
            counts: Dict[str, int] = {}
            for order in self.state.orders:
                oid = order.get("id")
                if oid:
                    counts[oid] = counts.get(oid, 0) + 1
        return {oid: n for oid, n in counts.items() if n > 1}

    def cleanup_duplicates(self) -> int:
        """Keep the most recently appended order for each id; returns how many were dropped."""
        with self.state.lock:
            orders = self.state.orders
            seen = set()
            kept: List[Dict[str, Any]] = []
            for order in reversed(orders):
                oid = order.get("id")
                if oid and oid in seen:
                    continue
                seen.add(oid)
                kept.append(order)
            kept.reverse()
            removed = len(orders) - len(kept)
            if removed:
                self.state.data["orders"] = kept
                logger.warning("Removed %d duplicate order record(s)", removed)
                self.state.changed()
            return removed

    def get_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        with self.state.lock:
            for order in reversed(self.state.orders):
                if order.get("id") == order_id:
                    return copy.deepcopy(order)
            pending = self.state.pending.get(order_id)
            return copy.deepcopy(pending) if pending else None

    def orders(self) -> List[Dict[str, Any]]:
        with self.state.lock:
            return copy.deepcopy(self.state.orders)


class PosServices:
    """Bundle of the services sharing one state holder."""

    def __init__(self, state: Optional[PosState] = None):
        self.state = state or PosState()
        self.catalog = CatalogService(self.state)
        self.cart = CartService(self.state, self.catalog)
        self.ledger = LedgerService(self.state, self.catalog, self.cart)
