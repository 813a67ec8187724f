#!/usr/bin/env python3
# Dataset reconciliation: remote JSON store -> local SQLite cache -> bundled defaults
import copy
import datetime as dt
import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import requests

import pos_config as cfg
import pos_service as ps

logger = logging.getLogger(__name__)

LIST_KEYS = ("categories", "products", "paymentMethods", "orderTypes", "orders")
UNDATED_PARTITION = "undated"


class RemoteStoreError(Exception):
    """A remote read or write failed. Callers treat it as a soft failure."""


def utc_month() -> str:
    return dt.datetime.now(dt.timezone.utc).strftime("%Y-%m")


# ---------- REMOTE STORE ----------
class RemoteStore:
    """GET/PUT client for a realtime-database style JSON document store.

    Layout:
      <base>/<path>.json                     full dataset
      <base>/<path>/reference.json           dataset minus orders (partitioned mode)
      <base>/<path>/orders/<YYYY-MM>.json    one month of orders (partitioned mode)
    """

    def __init__(self, base_url: Optional[str] = cfg.REMOTE_URL, path: str = cfg.REMOTE_PATH,
                 auth: Optional[str] = cfg.REMOTE_AUTH, timeout: float = cfg.REMOTE_TIMEOUT):
        self.base_url = (base_url or "").rstrip("/")
        self.path = (path or "posData").strip("/")
        self.auth = auth
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    def _url(self, *parts: str) -> str:
        return "/".join([self.base_url, self.path, *parts]) + ".json"

    def _request(self, method: str, url: str, payload: Any = None) -> Any:
        if not self.enabled:
            raise RemoteStoreError("remote store is not configured")
        params = {"auth": self.auth} if self.auth else None
        try:
            resp = requests.request(method, url, params=params, json=payload, timeout=self.timeout)
            resp.raise_for_status()
            return resp.json() if resp.content else None
        except requests.Timeout as exc:
            raise RemoteStoreError(f"{method} {url} timed out after {self.timeout}s") from exc
        except requests.RequestException as exc:
            raise RemoteStoreError(f"{method} {url} failed: {exc}") from exc
        except ValueError as exc:
            raise RemoteStoreError(f"{method} {url} returned invalid JSON") from exc

    def fetch_dataset(self) -> Any:
        return self._request("GET", "/".join([self.base_url, self.path]) + ".json")

    def save_dataset(self, data: Dict[str, Any]):
        self._request("PUT", "/".join([self.base_url, self.path]) + ".json", data)

    def fetch_reference(self) -> Any:
        return self._request("GET", self._url("reference"))

    def save_reference(self, data: Dict[str, Any]):
        self._request("PUT", self._url("reference"), data)

    def fetch_month(self, month: str) -> Any:
        return self._request("GET", self._url("orders", month))

    def save_month(self, month: str, orders: List[Dict[str, Any]]):
        self._request("PUT", self._url("orders", month), orders)


# ---------- LOCAL CACHE ----------
class LocalCache:
    """Single string-keyed slot in SQLite holding the serialized dataset."""

    def __init__(self, db_path: str = cfg.CACHE_DB_PATH, key: str = cfg.CACHE_KEY):
        self.db_path = db_path
        self.key = key

    def connect(self) -> sqlite3.Connection:
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute("""
        CREATE TABLE IF NOT EXISTS kv (
          key         TEXT PRIMARY KEY,
          value       TEXT NOT NULL,
          updated_utc TEXT NOT NULL
        )
        """)
        return conn

    def _decode(self, row) -> Optional[Dict[str, Any]]:
        if not row:
            return None
        try:
            data = json.loads(row["value"])
        except ValueError:
            logger.warning("Local cache slot %r holds invalid JSON; ignoring it", self.key)
            return None
        return data if isinstance(data, dict) else None

    def _upsert(self, conn: sqlite3.Connection, data: Dict[str, Any]):
        payload = json.dumps(data, ensure_ascii=False, separators=(",", ":"))
        conn.execute("""
            INSERT INTO kv (key, value, updated_utc) VALUES (?,?,?)
            ON CONFLICT(key) DO UPDATE SET value=excluded.value, updated_utc=excluded.updated_utc
        """, (self.key, payload, ps.iso_now()))

    def read(self) -> Optional[Dict[str, Any]]:
        conn = self.connect()
        try:
            row = conn.execute("SELECT value FROM kv WHERE key=?", (self.key,)).fetchone()
        finally:
            conn.close()
        return self._decode(row)

    def write(self, data: Dict[str, Any]):
        conn = self.connect()
        try:
            with conn:
                self._upsert(conn, data)
        finally:
            conn.close()

    def merge_reference(self, store: Any, settings: Any) -> Optional[Dict[str, Any]]:
        """Fold store info and settings into the cached dataset inside one write transaction.

        The slot is re-read after taking the write lock, so orders another
        process saved meanwhile are kept. Returns None when the slot is empty.
        """
        conn = self.connect()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                row = conn.execute("SELECT value FROM kv WHERE key=?", (self.key,)).fetchone()
                data = self._decode(row)
                if data is not None:
                    merge_store_settings(data, store, settings)
                    self._upsert(conn, data)
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
            return data
        finally:
            conn.close()

    def clear(self):
        conn = self.connect()
        try:
            with conn:
                conn.execute("DELETE FROM kv WHERE key=?", (self.key,))
        finally:
            conn.close()


def load_bundled_dataset(path: Optional[str] = cfg.DEFAULT_DATA_PATH) -> Optional[Dict[str, Any]]:
    if not path:
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as exc:
        logger.warning("Bundled dataset %s unreadable: %s", path, exc)
        return None
    return data if isinstance(data, dict) else None


# ---------- REPAIR ----------
def as_list(value: Any) -> List[Any]:
    """Normalize list-ish JSON; sparse arrays come back from the store as index-keyed objects."""
    if isinstance(value, list):
        return [v for v in value if v is not None]
    if isinstance(value, dict):
        def _key(k):
            return (0, int(k)) if str(k).isdigit() else (1, str(k))
        return [value[k] for k in sorted(value, key=_key) if value[k] is not None]
    return []


def is_valid_remote_payload(payload: Any) -> bool:
    return isinstance(payload, dict) and "orders" in payload


def substitute_default_catalog(data: Dict[str, Any]) -> bool:
    if as_list(data.get("categories")) and as_list(data.get("products")):
        return False
    logger.warning("Remote dataset has no categories/products; using the built-in catalog")
    data.update(copy.deepcopy(ps.default_catalog()))
    return True


def _highest_order_number(orders: List[Dict[str, Any]]) -> int:
    numbers = [ps.parse_order_number(o.get("id")) for o in orders if isinstance(o, dict)]
    return max((n for n in numbers if n is not None), default=0)


def repair_dataset(data: Dict[str, Any]) -> Dict[str, Any]:
    """Fill structural gaps in place and return ``data``."""
    if not isinstance(data.get("store"), dict):
        data["store"] = {}
    for key in LIST_KEYS:
        data[key] = as_list(data.get(key))
    data["orders"] = [o for o in data["orders"] if isinstance(o, dict)]
    settings = data.get("settings")
    if not isinstance(settings, dict):
        settings = data["settings"] = {}
    for key, value in ps.DEFAULT_SETTINGS.items():
        settings.setdefault(key, value)

    missing_status = 0
    for order in data["orders"]:
        if not order.get("status"):
            order["status"] = "completed"
            missing_status += 1
    if missing_status:
        logger.warning("Marked %d order(s) without status as completed", missing_status)

    counter = ps.counter_value(settings.get("nextOrderNumber")) or 1
    settings["nextOrderNumber"] = counter
    floor = _highest_order_number(data["orders"]) + 1
    if counter < floor:
        logger.warning("nextOrderNumber %s is behind the ledger; advancing to %s", counter, floor)
        settings["nextOrderNumber"] = floor
    return data


def _raise_counter(data: Dict[str, Any], other: Optional[Dict[str, Any]]):
    """Never let a stale source roll the sequence counter back."""
    other_counter = ps.counter_value(((other or {}).get("settings") or {}).get("nextOrderNumber"))
    if other_counter is not None and other_counter > data["settings"]["nextOrderNumber"]:
        logger.warning("Keeping cached nextOrderNumber %s over remote %s",
                       other_counter, data["settings"]["nextOrderNumber"])
        data["settings"]["nextOrderNumber"] = other_counter


def merge_store_settings(data: Dict[str, Any], store: Any, settings: Any) -> Dict[str, Any]:
    """Shallow-merge remote store/settings into ``data``; the order counter keeps the higher value."""
    if isinstance(store, dict):
        if not isinstance(data.get("store"), dict):
            data["store"] = {}
        data["store"].update(store)
    if isinstance(settings, dict):
        if not isinstance(data.get("settings"), dict):
            data["settings"] = {}
        local_counter = ps.counter_value(data["settings"].get("nextOrderNumber")) or 1
        remote_counter = ps.counter_value(settings.get("nextOrderNumber")) or 1
        data["settings"].update(settings)
        data["settings"]["nextOrderNumber"] = max(local_counter, remote_counter)
    return data


def merge_month(cached_orders: List[Dict[str, Any]], month: str,
                month_orders: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Replace one month of the cached ledger with the remote slice for that month."""
    kept = [o for o in cached_orders if isinstance(o, dict) and ps.month_key(o.get("timestamp")) != month]
    merged = kept + [o for o in month_orders if isinstance(o, dict)]
    merged.sort(key=lambda o: o.get("timestamp") or "")
    return merged


def group_orders_by_month(orders: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
    groups: Dict[str, List[Dict[str, Any]]] = {}
    for order in orders:
        key = ps.month_key(order.get("timestamp")) or UNDATED_PARTITION
        groups.setdefault(key, []).append(order)
    return groups


# ---------- LOAD ----------
def _load_remote(remote: RemoteStore, cached: Optional[Dict[str, Any]], partitioned: bool,
                 month: Optional[str]) -> Dict[str, Any]:
    if not partitioned:
        payload = remote.fetch_dataset()
        if not is_valid_remote_payload(payload):
            raise RemoteStoreError("remote dataset is missing its orders collection")
        substitute_default_catalog(payload)
        return payload
    reference = remote.fetch_reference()
    if not isinstance(reference, dict):
        raise RemoteStoreError("remote reference document is missing")
    month = month or utc_month()
    month_orders = as_list(remote.fetch_month(month))
    reference.pop("orders", None)
    substitute_default_catalog(reference)
    reference["orders"] = merge_month(as_list((cached or {}).get("orders")), month, month_orders)
    return reference


def load_dataset(remote: Optional[RemoteStore], cache: Optional[LocalCache],
                 bundled_path: Optional[str] = cfg.DEFAULT_DATA_PATH,
                 partitioned: bool = cfg.PARTITION_ORDERS,
                 month: Optional[str] = None) -> Tuple[Dict[str, Any], str]:
    """Pick the authoritative dataset. Never raises for remote problems.

    Returns ``(dataset, source)`` with source one of remote/local/bundled/default.
    """
    cached = None
    if cache is not None:
        try:
            cached = cache.read()
        except sqlite3.Error:
            logger.exception("Reading the local cache failed")

    data: Optional[Dict[str, Any]] = None
    source = None
    if remote is not None and remote.enabled:
        try:
            data = _load_remote(remote, cached, partitioned, month)
            source = "remote"
            logger.info("Dataset loaded from remote store")
        except RemoteStoreError as exc:
            logger.warning("Remote load failed (%s); trying local cache", exc)
    if data is None and cached:
        data, source = cached, "local"
        logger.info("Dataset loaded from local cache")
    if data is None:
        bundled = load_bundled_dataset(bundled_path)
        if bundled:
            data, source = bundled, "bundled"
            logger.info("Dataset loaded from %s", bundled_path)
    if data is None:
        data, source = ps.default_dataset(), "default"
        logger.info("Using built-in default dataset")

    repair_dataset(data)
    if source == "remote":
        _raise_counter(data, cached)

    if cache is not None:
        try:
            cache.write(data)
        except sqlite3.Error:
            logger.exception("Writing the local cache failed")
    return data, source


def write_remote(dataset: Dict[str, Any], remote: RemoteStore, partitioned: bool = cfg.PARTITION_ORDERS):
    if not partitioned:
        remote.save_dataset(dataset)
        return
    reference = {k: v for k, v in dataset.items() if k != "orders"}
    remote.save_reference(reference)
    for month, orders in sorted(group_orders_by_month(dataset.get("orders") or []).items()):
        remote.save_month(month, orders)


def validate_import_payload(payload: Any) -> Optional[str]:
    if not isinstance(payload, dict):
        return "Invalid data format"
    if not isinstance(payload.get("products"), list):
        return "Invalid data format: products must be a list"
    if not isinstance(payload.get("orders"), list):
        return "Invalid data format: orders must be a list"
    if not isinstance(payload.get("store"), dict):
        return "Invalid data format: store must be an object"
    return None


# ---------- ORCHESTRATION ----------
class PosSync:
    """Owns the data sources and applies the local-first, remote-best-effort policy."""

    def __init__(self, remote: Optional[RemoteStore] = None, cache: Optional[LocalCache] = None,
                 bundled_path: Optional[str] = cfg.DEFAULT_DATA_PATH,
                 partitioned: bool = cfg.PARTITION_ORDERS):
        self.remote = remote
        self.cache = cache
        self.bundled_path = bundled_path
        self.partitioned = partitioned
        self._remote_lock = threading.Lock()
        self._generation_lock = threading.Lock()
        self._generation = 0

    @property
    def remote_enabled(self) -> bool:
        return self.remote is not None and self.remote.enabled

    def load(self, month: Optional[str] = None) -> Tuple[Dict[str, Any], str]:
        return load_dataset(self.remote, self.cache, self.bundled_path, self.partitioned, month)

    def attach(self, state: ps.PosState) -> ps.PosState:
        state.on_change = self.persist
        return state

    def persist(self, dataset: Dict[str, Any], background: bool = True) -> Optional[threading.Thread]:
        """Write the cache now, then the remote in a daemon thread. Remote failures only log."""
        if self.cache is not None:
            try:
                self.cache.write(dataset)
            except sqlite3.Error:
                logger.exception("Writing the local cache failed")
        if not self.remote_enabled:
            return None
        with self._generation_lock:
            self._generation += 1
            generation = self._generation
        if not background:
            self._push(dataset, generation)
            return None
        thread = threading.Thread(target=self._push, args=(dataset, generation),
                                  name="pos-remote-save", daemon=True)
        thread.start()
        return thread

    def _push(self, dataset: Dict[str, Any], generation: int):
        with self._remote_lock:
            if generation < self._generation:
                logger.debug("Skipping stale remote save #%d", generation)
                return
            try:
                write_remote(dataset, self.remote, self.partitioned)
                logger.info("Dataset saved to remote store")
            except RemoteStoreError as exc:
                logger.warning("Remote save failed (continuing with local cache): %s", exc)

    def _fetch_reference(self) -> Optional[Dict[str, Any]]:
        if not self.remote_enabled:
            return None
        try:
            payload = self.remote.fetch_reference() if self.partitioned else self.remote.fetch_dataset()
        except RemoteStoreError as exc:
            logger.warning("Could not refresh settings from remote: %s", exc)
            return None
        return payload if isinstance(payload, dict) else None

    def refresh_store_settings(self, state: ps.PosState) -> bool:
        """Merge remote store info and settings into ``state``; False when the remote is unavailable."""
        payload = self._fetch_reference()
        if payload is None:
            return False
        with state.lock:
            merge_store_settings(state.data, payload.get("store"), payload.get("settings"))
            snapshot = state.snapshot()
        if self.cache is not None:
            if self.cache.merge_reference(snapshot.get("store"), snapshot.get("settings")) is None:
                self.cache.write(snapshot)
        return True

    def refresh_cache(self) -> bool:
        """Merge remote store info and settings straight into the cache slot."""
        if self.cache is None:
            return False
        payload = self._fetch_reference()
        if payload is None:
            return False
        return self.cache.merge_reference(payload.get("store"), payload.get("settings")) is not None

    def push_cached(self) -> bool:
        """Send the cache slot as it is right now to the remote, without rewriting the cache."""
        if not self.remote_enabled or self.cache is None:
            return False
        with self._remote_lock:
            dataset = self.cache.read()
            if dataset is None:
                return False
            try:
                write_remote(dataset, self.remote, self.partitioned)
            except RemoteStoreError as exc:
                logger.warning("Remote push failed: %s", exc)
                return False
        logger.info("Pushed cached dataset (%d orders)", len(dataset.get("orders") or []))
        return True

    def load_month_orders(self, month: str, state: Optional[ps.PosState] = None) -> Tuple[List[Dict[str, Any]], str]:
        """Orders for one YYYY-MM month; falls back to the local ledger when the remote fails."""
        if ps.month_key(month + "-01") != month:
            raise ps.ValidationError("Month must look like YYYY-MM")
        orders: Optional[List[Dict[str, Any]]] = None
        source = "local"
        if self.remote_enabled:
            try:
                if self.partitioned:
                    orders = as_list(self.remote.fetch_month(month))
                else:
                    payload = self.remote.fetch_dataset()
                    if not is_valid_remote_payload(payload):
                        raise RemoteStoreError("remote dataset is missing its orders collection")
                    orders = [o for o in as_list(payload.get("orders"))
                              if isinstance(o, dict) and ps.month_key(o.get("timestamp")) == month]
                source = "remote"
            except RemoteStoreError as exc:
                logger.warning("Remote month %s unavailable (%s); using local ledger", month, exc)
        if orders is None:
            if state is not None:
                ledger = state.snapshot().get("orders") or []
            else:
                ledger = (self.cache.read() if self.cache is not None else None) or {}
                ledger = ledger.get("orders") or []
            orders = [o for o in as_list(ledger) if isinstance(o, dict) and ps.month_key(o.get("timestamp")) == month]
        orders = [o for o in orders if isinstance(o, dict)]
        for order in orders:
            if not order.get("status"):
                order["status"] = "completed"
        return orders, source

    def import_dataset(self, state: ps.PosState, payload: Any) -> Dict[str, Any]:
        """Replace the whole dataset with an uploaded document. Bypasses reconciliation."""
        error = validate_import_payload(payload)
        if error:
            raise ps.ValidationError(error)
        data = copy.deepcopy(payload)
        with state.lock:
            state.replace(data)
            state.changed()
        logger.info("Imported dataset (%d products, %d orders)", len(data["products"]), len(data["orders"]))
        return data

    def clear_all(self, state: ps.PosState) -> Dict[str, Any]:
        """Wipe the cache and reset ``state`` to the built-in dataset.

        The order counter is carried over, so ids used before the reset are
        never issued again.
        """
        with state.lock:
            counters = [
                ps.counter_value(state.settings.get("nextOrderNumber")) or 1,
                _highest_order_number(state.orders) + 1,
                max((ps.parse_order_number(oid) or 0 for oid in state.pending), default=0) + 1,
            ]
            if self.cache is not None:
                cached = self.cache.read() or {}
                counters.append(ps.counter_value((cached.get("settings") or {}).get("nextOrderNumber")) or 1)
                self.cache.clear()
            fresh = ps.default_dataset()
            fresh["settings"]["nextOrderNumber"] = max(counters)
            state.replace(fresh)
            state.cart.clear()
            state.pending.clear()
            state.changed()
        logger.warning("All POS data cleared; next order number kept at %d", fresh["settings"]["nextOrderNumber"])
        return state.snapshot()
