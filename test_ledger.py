import threading
import unittest

import pos_service as ps


def _order(order_id, status="completed", total=100, ts="2025-03-01T10:00:00.000Z"):
    return {
        "id": order_id,
        "timestamp": ts,
        "items": [{"productId": "x", "name": "X", "quantity": 1, "price": total, "category": "c"}],
        "subtotal": total,
        "tax": 0,
        "total": total,
        "paymentMethod": "cash",
        "orderType": "dinein",
        "status": status,
    }


class LedgerTest(unittest.TestCase):
    def setUp(self):
        self.saved = []
        self.state = ps.PosState(ps.default_dataset(), on_change=self.saved.append)
        self.pos = ps.PosServices(self.state)
        self.ledger = self.pos.ledger

    def _fill_cart(self):
        self.pos.cart.add_product_id("chicken_biryani")
        self.pos.cart.add_product_id("chicken_biryani")
        self.pos.cart.add_product_id("mutton_karahi")

    def test_checkout_total(self):
        self._fill_cart()
        order = self.ledger.commit_order("cash", "dinein")
        self.assertEqual(order["subtotal"], 1190)
        self.assertEqual(order["total"], 1190)
        self.assertEqual(order["tax"], 0)
        self.assertEqual(order["status"], "completed")
        self.assertTrue(self.ledger.confirm_order(order["id"]))
        self.assertEqual(self.pos.cart.lines(), [])
        self.assertEqual(len(self.ledger.orders()), 1)

    def test_counter_seven(self):
        self.state.settings["nextOrderNumber"] = 7
        self._fill_cart()
        order = self.ledger.commit_order("card", "takeaway")
        self.assertEqual(order["id"], "ORD-007")
        self.assertEqual(self.state.settings["nextOrderNumber"], 8)
        # counter bump is persisted before confirmation
        self.assertEqual(self.saved[-1]["settings"]["nextOrderNumber"], 8)

    def test_ids_strictly_increase(self):
        ids = []
        for _ in range(3):
            self._fill_cart()
            order = self.ledger.commit_order("cash", "dinein")
            self.ledger.confirm_order(order)
            ids.append(ps.parse_order_number(order["id"]))
        self.assertEqual(ids, sorted(set(ids)))
        self.assertEqual(len(ids), 3)

    def test_counter_skips_ids_already_in_ledger(self):
        self.state.orders.append(_order("ORD-004"))
        self.state.settings["nextOrderNumber"] = 2
        self.assertEqual(self.ledger.next_order_id(), "ORD-005")

    def test_double_confirm_single_entry(self):
        self._fill_cart()
        order = self.ledger.commit_order("cash", "dinein")
        self.assertTrue(self.ledger.confirm_order(order["id"]))
        self.pos.cart.add_product_id("beef_biryani")
        self.assertFalse(self.ledger.confirm_order(order["id"]))
        self.assertEqual(len([o for o in self.ledger.orders() if o["id"] == order["id"]]), 1)
        self.assertEqual(len(self.pos.cart.lines()), 1)

    def test_confirm_without_pending_order(self):
        with self.assertRaises(ps.ValidationError):
            self.ledger.confirm_order("ORD-404")

    def test_checkout_requires_selections_and_items(self):
        with self.assertRaises(ps.ValidationError):
            self.ledger.commit_order("cash", "dinein")
        self._fill_cart()
        with self.assertRaises(ps.ValidationError):
            self.ledger.commit_order(None, "dinein")
        with self.assertRaises(ps.ValidationError):
            self.ledger.commit_order("cash", "")
        with self.assertRaises(ps.ValidationError):
            self.ledger.commit_order("bitcoin", "dinein")
        self.assertEqual(self.state.settings["nextOrderNumber"], 1)

    def test_cancelled_pending_number_not_reused(self):
        self._fill_cart()
        first = self.ledger.commit_order("cash", "dinein")
        self.assertTrue(self.ledger.cancel_pending_order(first["id"]))
        second = self.ledger.commit_order("cash", "dinein")
        self.assertEqual(first["id"], "ORD-001")
        self.assertEqual(second["id"], "ORD-002")
        self.assertFalse(self.ledger.cancel_pending_order(first["id"]))

    def test_return_then_delete_rejected(self):
        self.state.orders.append(_order("ORD-001"))
        returned = self.ledger.set_status("ORD-001", "returned")
        self.assertEqual(returned["status"], "returned")
        self.assertIn("returnedAt", returned)
        with self.assertRaises(ps.InvariantError):
            self.ledger.set_status("ORD-001", "deleted")
        self.assertEqual(self.ledger.get_order("ORD-001")["status"], "returned")

    def test_soft_delete_keeps_record(self):
        self.state.orders.append(_order("ORD-001"))
        deleted = self.ledger.set_status("ORD-001", "deleted")
        self.assertIn("deletedAt", deleted)
        self.assertEqual(len(self.ledger.orders()), 1)
        with self.assertRaises(ps.ValidationError):
            self.ledger.set_status("ORD-001", "completed")
        with self.assertRaises(ps.ValidationError):
            self.ledger.set_status("ORD-999", "returned")

    def test_cleanup_duplicates_keeps_latest(self):
        self.state.orders.extend([
            _order("ORD-001", total=100),
            _order("ORD-002", total=200),
            _order("ORD-001", total=150),
        ])
        self.assertEqual(self.ledger.duplicate_ids(), {"ORD-001": 2})
        self.assertEqual(self.ledger.cleanup_duplicates(), 1)
        orders = self.ledger.orders()
        self.assertEqual([o["id"] for o in orders], ["ORD-002", "ORD-001"])
        self.assertEqual(orders[1]["total"], 150)
        saves = len(self.saved)
        self.assertEqual(self.ledger.cleanup_duplicates(), 0)
        self.assertEqual(len(self.saved), saves)

    def test_new_checkout_supersedes_open_one(self):
        self._fill_cart()
        first = self.ledger.commit_order("cash", "dinein")
        self.pos.cart.add_product_id("beef_biryani")
        second = self.ledger.commit_order("card", "takeaway")
        self.assertEqual([o["id"] for o in self.ledger.pending_orders()], [second["id"]])
        with self.assertRaises(ps.ValidationError):
            self.ledger.confirm_order(first["id"])
        self.assertTrue(self.ledger.confirm_order(second["id"]))
        self.assertEqual(self.state.pending, {})
        self.assertEqual(self.ledger.next_order_id(), "ORD-003")

    def test_stored_counter_read_as_number(self):
        self.state.settings["nextOrderNumber"] = "12"
        self.assertEqual(self.ledger.next_order_id(), "ORD-012")
        self.state.settings["nextOrderNumber"] = 15.0
        self.assertEqual(self.ledger.next_order_id(), "ORD-015")
        self.assertEqual(self.state.settings["nextOrderNumber"], 16)

    def test_concurrent_ids_are_unique(self):
        self.state.settings["nextOrderNumber"] = 5
        ids = []
        ids_lock = threading.Lock()

        def draw():
            for _ in range(25):
                oid = self.ledger.next_order_id()
                with ids_lock:
                    ids.append(oid)

        threads = [threading.Thread(target=draw) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)
        self.assertEqual(len(ids), 200)
        self.assertEqual(len(set(ids)), 200)
        self.assertEqual(self.state.settings["nextOrderNumber"], 205)
        self.assertEqual(min(ps.parse_order_number(i) for i in ids), 5)

    def test_concurrent_checkouts_keep_counter(self):
        self._fill_cart()
        orders = []
        errors = []

        def checkout():
            try:
                orders.append(self.ledger.commit_order("cash", "dinein"))
            except ps.PosError as exc:
                errors.append(exc)

        threads = [threading.Thread(target=checkout) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(10)
        self.assertEqual(errors, [])
        self.assertEqual(len({o["id"] for o in orders}), 10)
        self.assertEqual(self.state.settings["nextOrderNumber"], 11)
        self.assertEqual(len(self.state.pending), 1)

    def test_persist_failure_keeps_state(self):
        def boom(_snapshot):
            raise RuntimeError("disk full")
        self.state.on_change = boom
        self._fill_cart()
        order = self.ledger.commit_order("cash", "dinein")
        self.assertTrue(self.ledger.confirm_order(order["id"]))
        self.assertEqual(len(self.ledger.orders()), 1)


class OrderIdTest(unittest.TestCase):
    def test_format_and_parse(self):
        self.assertEqual(ps.format_order_id(7), "ORD-007")
        self.assertEqual(ps.format_order_id(1234), "ORD-1234")
        self.assertEqual(ps.parse_order_number("ORD-042"), 42)
        self.assertIsNone(ps.parse_order_number("42"))
        self.assertIsNone(ps.parse_order_number(None))

    def test_round_half_up(self):
        self.assertEqual(ps.round_half_up(2.5), 3)
        self.assertEqual(ps.round_half_up(2.4), 2)


if __name__ == "__main__":
    unittest.main()
