#!/usr/bin/env python3
# Flask JSON API over the POS services
import logging
from typing import Any, Dict, Optional

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException

import pos_config as cfg
import pos_reports as reports
import pos_service as ps
import pos_sync as sync_mod

CATEGORY_FIELDS = ("name", "color", "emoji", "unit", "basePrice")
PRODUCT_FIELDS = ("name", "category", "price", "quantity", "description")
STORE_FIELDS = ("name", "address", "phone", "email", "taxRate", "receiptHeader", "receiptFooter")


def _json_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise ps.ValidationError("Invalid JSON payload")
    return body


def _pick(body: Dict[str, Any], fields) -> Dict[str, Any]:
    return {k: body[k] for k in fields if k in body}


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def _add_no_cache_headers(response):
    response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, max-age=0'
    response.headers['Pragma'] = 'no-cache'
    if 'Expires' in response.headers:
        del response.headers['Expires']
    response.headers['X-Content-Type-Options'] = 'nosniff'
    return response


def build_sync() -> sync_mod.PosSync:
    remote = sync_mod.RemoteStore() if cfg.REMOTE_URL else None
    return sync_mod.PosSync(remote=remote, cache=sync_mod.LocalCache())


def create_app(state: Optional[ps.PosState] = None,
               sync: Optional[sync_mod.PosSync] = None) -> Flask:
    """Build the app. Without an explicit state the dataset is reconciled from the configured sources."""
    app = Flask(__name__)
    level = getattr(logging, cfg.LOG_LEVEL_NAME, logging.INFO)
    app.logger.setLevel(level)
    logging.getLogger('werkzeug').setLevel(level)

    if state is None:
        sync = sync or build_sync()
        data, source = sync.load()
        app.logger.info("Dataset loaded from %s (%d orders)", source, len(data.get("orders") or []))
        state = ps.PosState(data)
    if sync is not None:
        sync.attach(state)
    services = ps.PosServices(state)
    app.extensions['pos'] = {'services': services, 'sync': sync}

    catalog = services.catalog
    cart = services.cart
    ledger = services.ledger

    @app.after_request
    def _no_cache(response):
        if request.path.startswith('/api/'):
            _add_no_cache_headers(response)
        return response

    @app.errorhandler(ps.PosError)
    def _pos_error(exc: ps.PosError):
        code = 409 if isinstance(exc, ps.InvariantError) else 400
        return jsonify({'status': 'error', 'message': exc.message}), code

    @app.errorhandler(404)
    def _not_found(_exc):
        return jsonify({'status': 'error', 'message': 'Not found'}), 404

    @app.errorhandler(405)
    def _not_allowed(_exc):
        return jsonify({'status': 'error', 'message': 'Method not allowed'}), 405

    @app.errorhandler(Exception)
    def _unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return jsonify({'status': 'error', 'message': exc.description}), exc.code
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return jsonify({'status': 'error', 'message': str(exc) or 'Internal error'}), 500

    def _period_orders():
        period = request.args.get('period', 'all')
        return reports.filter_orders(ledger.orders(), period)

    # ---------- CATALOG ----------
    @app.route('/api/health')
    def health():
        return jsonify({
            'status': 'success',
            'remote': bool(sync and sync.remote_enabled),
            'partitioned': bool(sync and sync.partitioned),
            'orders': len(state.orders),
            'pending': len(state.pending),
        })

    @app.route('/api/catalog')
    def get_catalog():
        snap = state.snapshot()
        return jsonify({
            'status': 'success',
            'store': snap.get('store') or {},
            'categories': snap.get('categories') or [],
            'products': snap.get('products') or [],
            'paymentMethods': snap.get('paymentMethods') or [],
            'orderTypes': snap.get('orderTypes') or [],
            'settings': snap.get('settings') or {},
        })

    @app.route('/api/categories', methods=['POST'])
    def add_category():
        body = _json_body()
        category = catalog.add_category(
            body.get('name'),
            color=body.get('color') or '#EF4444',
            emoji=body.get('emoji') or '',
            unit=body.get('unit') or 'pcs',
            base_price=body.get('basePrice', 0),
        )
        return jsonify({'status': 'success', 'category': category}), 201

    @app.route('/api/categories/<category_id>', methods=['PUT'])
    def edit_category(category_id):
        category = catalog.edit_category(category_id, **_pick(_json_body(), CATEGORY_FIELDS))
        return jsonify({'status': 'success', 'category': category})

    @app.route('/api/categories/<category_id>', methods=['DELETE'])
    def delete_category(category_id):
        category = catalog.delete_category(category_id)
        return jsonify({'status': 'success', 'category': category})

    @app.route('/api/products', methods=['POST'])
    def add_product():
        body = _json_body()
        product = catalog.add_product(
            body.get('name'),
            body.get('category'),
            price=body.get('price'),
            quantity=body.get('quantity'),
            description=body.get('description') or '',
        )
        return jsonify({'status': 'success', 'product': product}), 201

    @app.route('/api/products/<product_id>', methods=['PUT'])
    def update_product(product_id):
        product = catalog.update_product(product_id, **_pick(_json_body(), PRODUCT_FIELDS))
        return jsonify({'status': 'success', 'product': product})

    @app.route('/api/products/<product_id>', methods=['DELETE'])
    def delete_product(product_id):
        product = catalog.delete_product(product_id)
        return jsonify({'status': 'success', 'product': product})

    @app.route('/api/store', methods=['PUT'])
    def update_store():
        store = catalog.update_store(**_pick(_json_body(), STORE_FIELDS))
        return jsonify({'status': 'success', 'store': store})

    @app.route('/api/settings', methods=['PUT'])
    def update_settings():
        body = _json_body()
        if not body:
            raise ps.ValidationError("No settings supplied")
        settings = catalog.update_settings(**body)
        return jsonify({'status': 'success', 'settings': settings})

    # ---------- CART ----------
    def _cart_payload(**extra):
        payload = {'status': 'success', 'lines': cart.lines(), 'subtotal': cart.subtotal()}
        payload.update(extra)
        return jsonify(payload)

    @app.route('/api/cart')
    def get_cart():
        return _cart_payload()

    @app.route('/api/cart', methods=['DELETE'])
    def clear_cart():
        cart.clear()
        return _cart_payload()

    @app.route('/api/cart/items', methods=['POST'])
    def add_cart_item():
        line = cart.add_product_id(_json_body().get('productId'))
        return _cart_payload(line=line)

    @app.route('/api/cart/custom', methods=['POST'])
    def add_custom_line():
        body = _json_body()
        line = cart.add_custom_line(body.get('category'), body.get('price'))
        return _cart_payload(line=line)

    @app.route('/api/cart/lines/<int:idx>', methods=['POST'])
    def adjust_line(idx):
        line = cart.adjust_quantity(idx, _json_body().get('delta'))
        return _cart_payload(line=line)

    @app.route('/api/cart/lines/<int:idx>', methods=['DELETE'])
    def remove_line(idx):
        line = cart.remove_line(idx)
        return _cart_payload(line=line)

    # ---------- ORDERS ----------
    @app.route('/api/checkout', methods=['POST'])
    def checkout():
        body = _json_body()
        order = ledger.commit_order(body.get('paymentMethod'), body.get('orderType'))
        return jsonify({'status': 'success', 'order': order}), 201

    @app.route('/api/orders/<order_id>/confirm', methods=['POST'])
    def confirm_order(order_id):
        committed = ledger.confirm_order(order_id)
        return jsonify({'status': 'success', 'committed': committed, 'order': ledger.get_order(order_id)})

    @app.route('/api/orders/<order_id>/cancel', methods=['POST'])
    def cancel_order(order_id):
        if not ledger.cancel_pending_order(order_id):
            raise ps.ValidationError("No pending order with that id")
        return jsonify({'status': 'success', 'cancelled': order_id})

    @app.route('/api/orders/<order_id>/return', methods=['POST'])
    def return_order(order_id):
        order = ledger.set_status(order_id, 'returned')
        return jsonify({'status': 'success', 'order': order})

    @app.route('/api/orders/<order_id>/delete', methods=['POST'])
    def soft_delete_order(order_id):
        order = ledger.set_status(order_id, 'deleted')
        return jsonify({'status': 'success', 'order': order})

    @app.route('/api/orders')
    def list_orders():
        orders = reports.visible_orders(_period_orders(), _flag(request.args.get('include_deleted')))
        return jsonify({'status': 'success', 'orders': orders, 'duplicates': ledger.duplicate_ids()})

    @app.route('/api/orders/<order_id>')
    def get_order(order_id):
        order = ledger.get_order(order_id)
        if order is None:
            return jsonify({'status': 'error', 'message': 'Order not found'}), 404
        return jsonify({'status': 'success', 'order': order})

    @app.route('/api/orders/<order_id>/receipt')
    def order_receipt(order_id):
        order = ledger.get_order(order_id)
        if order is None:
            return jsonify({'status': 'error', 'message': 'Order not found'}), 404
        snap = state.snapshot()
        return jsonify({
            'status': 'success',
            'order': order,
            'store': snap.get('store') or {},
            'lines': reports.receipt_lines(order, snap),
            'copies': (snap.get('settings') or {}).get('printCopies', 1),
        })

    # ---------- SALES ----------
    @app.route('/api/sales/summary')
    def sales_summary():
        return jsonify({'status': 'success', 'summary': reports.sales_summary(_period_orders())})

    @app.route('/api/analytics')
    def analytics():
        return jsonify({'status': 'success', 'analytics': reports.analytics(_period_orders(), state.snapshot())})

    @app.route('/api/sales/export.csv')
    def export_csv():
        orders = reports.visible_orders(_period_orders())
        body = reports.export_sales_csv(orders, state.snapshot())
        return Response(body, mimetype='text/csv',
                        headers={'Content-Disposition': 'attachment; filename=sales.csv'})

    @app.route('/api/sales/months/<month>')
    def month_orders(month):
        if sync is not None:
            orders, source = sync.load_month_orders(month, state)
        else:
            if ps.month_key(month + "-01") != month:
                raise ps.ValidationError("Month must look like YYYY-MM")
            orders = [o for o in ledger.orders() if ps.month_key(o.get('timestamp')) == month]
            source = 'local'
        return jsonify({
            'status': 'success',
            'month': month,
            'source': source,
            'orders': reports.visible_orders(orders),
            'summary': reports.sales_summary(orders),
        })

    @app.route('/api/maintenance/cleanup-duplicates', methods=['POST'])
    def cleanup_duplicates():
        removed = ledger.cleanup_duplicates()
        return jsonify({'status': 'success', 'removed': removed})

    # ---------- DATA ----------
    @app.route('/api/data/export')
    def export_data():
        return Response(reports.export_dataset_json(state.snapshot()), mimetype='application/json',
                        headers={'Content-Disposition': 'attachment; filename=pos-data.json'})

    @app.route('/api/data/import', methods=['POST'])
    def import_data():
        payload = request.get_json(silent=True)
        if sync is not None:
            data = sync.import_dataset(state, payload)
        else:
            error = sync_mod.validate_import_payload(payload)
            if error:
                raise ps.ValidationError(error)
            with state.lock:
                state.replace(payload)
                state.changed()
            data = payload
        return jsonify({
            'status': 'success',
            'products': len(data.get('products') or []),
            'orders': len(data.get('orders') or []),
        })

    @app.route('/api/data/refresh', methods=['POST'])
    def refresh_data():
        refreshed = bool(sync is not None and sync.refresh_store_settings(state))
        snap = state.snapshot()
        return jsonify({
            'status': 'success',
            'refreshed': refreshed,
            'store': snap.get('store') or {},
            'settings': snap.get('settings') or {},
        })

    @app.route('/api/data/sync', methods=['POST'])
    def sync_data():
        if sync is None:
            return jsonify({'status': 'error', 'message': 'Persistence is not configured'}), 503
        sync.persist(state.snapshot(), background=False)
        return jsonify({'status': 'success', 'remote': sync.remote_enabled})

    @app.route('/api/data', methods=['DELETE'])
    def clear_data():
        if sync is None:
            return jsonify({'status': 'error', 'message': 'Persistence is not configured'}), 503
        data = sync.clear_all(state)
        return jsonify({'status': 'success', 'nextOrderNumber': data['settings']['nextOrderNumber']})

    return app
