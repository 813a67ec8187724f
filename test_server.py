import json
import os
import shutil
import tempfile
import unittest

import pos_service as ps
import pos_sync
from pos_server import create_app


class ServerTest(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.mkdtemp()
        self.cache = pos_sync.LocalCache(os.path.join(self.tmp, "cache.db"))
        self.sync = pos_sync.PosSync(remote=None, cache=self.cache,
                                     bundled_path=os.path.join(self.tmp, "missing.json"))
        self.state = ps.PosState(ps.default_dataset())
        self.app = create_app(state=self.state, sync=self.sync)
        self.app.testing = True
        self.client = self.app.test_client()

    def tearDown(self):
        shutil.rmtree(self.tmp, ignore_errors=True)

    def _checkout(self, *product_ids):
        for pid in product_ids:
            self.client.post("/api/cart/items", json={"productId": pid})
        resp = self.client.post("/api/checkout", json={"paymentMethod": "cash", "orderType": "dinein"})
        self.assertEqual(resp.status_code, 201)
        order = resp.get_json()["order"]
        resp = self.client.post(f"/api/orders/{order['id']}/confirm")
        self.assertTrue(resp.get_json()["committed"])
        return order

    def test_health_and_catalog(self):
        resp = self.client.get("/api/health")
        self.assertEqual(resp.get_json()["status"], "success")
        self.assertFalse(resp.get_json()["remote"])
        self.assertIn("no-store", resp.headers["Cache-Control"])
        catalog = self.client.get("/api/catalog").get_json()
        self.assertEqual(len(catalog["categories"]), len(ps.default_catalog()["categories"]))

    def test_checkout_flow(self):
        order = self._checkout("chicken_biryani", "chicken_biryani", "mutton_karahi")
        self.assertEqual(order["id"], "ORD-001")
        self.assertEqual(order["total"], 1190)
        cart = self.client.get("/api/cart").get_json()
        self.assertEqual(cart["lines"], [])
        again = self.client.post("/api/orders/ORD-001/confirm").get_json()
        self.assertFalse(again["committed"])
        self.assertEqual(len(self.cache.read()["orders"]), 1)

    def test_empty_checkout_is_400(self):
        resp = self.client.post("/api/checkout", json={"paymentMethod": "cash", "orderType": "dinein"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json(), {"status": "error", "message": "Cart is empty"})

    def test_cart_line_endpoints(self):
        self.client.post("/api/cart/items", json={"productId": "beef_biryani"})
        resp = self.client.post("/api/cart/lines/0", json={"delta": 2})
        self.assertEqual(resp.get_json()["subtotal"], 1140)
        custom = self.client.post("/api/cart/custom", json={"category": "sweets", "price": 300}).get_json()
        self.assertTrue(custom["line"]["custom"])
        self.client.delete("/api/cart/lines/0")
        self.assertEqual(self.client.get("/api/cart").get_json()["subtotal"], 300)
        self.assertEqual(self.client.delete("/api/cart/lines/9").status_code, 400)
        self.client.delete("/api/cart")
        self.assertEqual(self.client.get("/api/cart").get_json()["lines"], [])

    def test_return_then_delete_conflict(self):
        self._checkout("chicken_biryani")
        self.assertEqual(self.client.post("/api/orders/ORD-001/return").status_code, 200)
        resp = self.client.post("/api/orders/ORD-001/delete")
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.get_json()["status"], "error")

    def test_soft_deleted_hidden_by_default(self):
        self._checkout("chicken_biryani")
        self._checkout("beef_biryani")
        self.client.post("/api/orders/ORD-001/delete")
        ids = [o["id"] for o in self.client.get("/api/orders").get_json()["orders"]]
        self.assertEqual(ids, ["ORD-002"])
        resp = self.client.get("/api/orders?include_deleted=1")
        self.assertEqual(len(resp.get_json()["orders"]), 2)
        self.assertEqual(self.client.get("/api/orders/ORD-001").get_json()["order"]["status"], "deleted")
        self.assertEqual(self.client.get("/api/orders/ORD-404").status_code, 404)

    def test_category_delete_rule(self):
        resp = self.client.delete("/api/categories/biryanis")
        self.assertEqual(resp.status_code, 409)
        self.assertIn("product(s)", resp.get_json()["message"])
        resp = self.client.post("/api/categories", json={"name": "Soups", "emoji": "🥣"})
        self.assertEqual(resp.status_code, 201)
        self.assertEqual(self.client.delete("/api/categories/soups").status_code, 200)

    def test_product_endpoints(self):
        resp = self.client.post("/api/products", json={"name": "Halwa 1kg", "category": "sweets", "quantity": 1})
        self.assertEqual(resp.status_code, 201)
        product = resp.get_json()["product"]
        self.assertEqual(product["price"], 1200)
        resp = self.client.put(f"/api/products/{product['id']}", json={"description": "Fresh"})
        self.assertEqual(resp.get_json()["product"]["description"], "Fresh")
        self.assertEqual(self.client.delete(f"/api/products/{product['id']}").status_code, 200)

    def test_sales_endpoints(self):
        self._checkout("chicken_biryani", "chicken_biryani", "mutton_karahi")
        summary = self.client.get("/api/sales/summary?period=today").get_json()["summary"]
        self.assertEqual(summary["revenue"], 1190)
        self.assertEqual(self.client.get("/api/sales/summary?period=forever").status_code, 400)
        analytics = self.client.get("/api/analytics").get_json()["analytics"]
        self.assertEqual(analytics["topProducts"][0]["productId"], "chicken_biryani")
        resp = self.client.get("/api/sales/export.csv")
        self.assertEqual(resp.mimetype, "text/csv")
        self.assertTrue(resp.get_data(as_text=True).startswith("Order ID,Date,Items"))
        receipt = self.client.get("/api/orders/ORD-001/receipt").get_json()
        self.assertEqual(len(receipt["lines"]), 2)

    def test_month_view_local(self):
        order = self._checkout("chicken_biryani")
        month = order["timestamp"][:7]
        resp = self.client.get(f"/api/sales/months/{month}").get_json()
        self.assertEqual(resp["source"], "local")
        self.assertEqual([o["id"] for o in resp["orders"]], ["ORD-001"])
        self.assertEqual(self.client.get("/api/sales/months/bad").status_code, 400)

    def test_cleanup_duplicates_endpoint(self):
        self._checkout("chicken_biryani")
        self.state.orders.append(json.loads(json.dumps(self.state.orders[0])))
        resp = self.client.post("/api/maintenance/cleanup-duplicates").get_json()
        self.assertEqual(resp["removed"], 1)
        self.assertEqual(len(self.state.orders), 1)

    def test_export_and_import(self):
        self._checkout("chicken_biryani")
        exported = json.loads(self.client.get("/api/data/export").get_data(as_text=True))
        self.assertEqual(exported["orders"][0]["id"], "ORD-001")
        bad = self.client.post("/api/data/import", json={"products": "x", "orders": [], "store": {}})
        self.assertEqual(bad.status_code, 400)
        exported["store"]["name"] = "Imported"
        ok = self.client.post("/api/data/import", json=exported)
        self.assertEqual(ok.get_json()["orders"], 1)
        self.assertEqual(self.cache.read()["store"]["name"], "Imported")

    def test_settings_and_store(self):
        resp = self.client.put("/api/settings", json={"nextOrderNumber": 20})
        self.assertEqual(resp.get_json()["settings"]["nextOrderNumber"], 20)
        self.assertEqual(self.client.put("/api/settings", json={"nextOrderNumber": 3}).status_code, 409)
        resp = self.client.put("/api/store", json={"name": "Naseeb", "unknown": 1})
        store = resp.get_json()["store"]
        self.assertEqual(store["name"], "Naseeb")
        self.assertNotIn("unknown", store)
        order = self._checkout("chicken_biryani")
        self.assertEqual(order["id"], "ORD-020")

    def test_settings_counter_float_and_string(self):
        self.state.settings["nextOrderNumber"] = 7
        resp = self.client.put("/api/settings", json={"nextOrderNumber": 9.0})
        self.assertEqual(resp.get_json()["settings"]["nextOrderNumber"], 9)
        self.assertEqual(self._checkout("chicken_biryani")["id"], "ORD-009")
        self.client.put("/api/settings", json={"nextOrderNumber": "12"})
        self.assertEqual(self._checkout("chicken_biryani")["id"], "ORD-012")
        resp = self.client.put("/api/settings", json={"nextOrderNumber": 12.5})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self.state.settings["nextOrderNumber"], 13)

    def test_clear_all_data(self):
        self._checkout("chicken_biryani")
        self._checkout("beef_biryani")
        resp = self.client.delete("/api/data")
        self.assertEqual(resp.get_json(), {"status": "success", "nextOrderNumber": 3})
        self.assertEqual(self.client.get("/api/orders").get_json()["orders"], [])
        self.assertEqual(self._checkout("chicken_biryani")["id"], "ORD-003")

    def test_refresh_and_sync_without_remote(self):
        self.assertFalse(self.client.post("/api/data/refresh").get_json()["refreshed"])
        resp = self.client.post("/api/data/sync").get_json()
        self.assertEqual(resp["status"], "success")
        self.assertFalse(resp["remote"])
        self.assertIsNotNone(self.cache.read())

    def test_unknown_route_is_json_404(self):
        resp = self.client.get("/api/nope")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.get_json()["status"], "error")


if __name__ == "__main__":
    unittest.main()
