import json
import os
import tempfile
import unittest
from decimal import Decimal

from feirasmart.cart import Cart, CartItem, JsonFileCartStore, MemoryCartStore
from feirasmart.utils.errors import NotFoundError, ValidationError


def cart_item(pid, vid=1, mid=1, price="8.50", qty=1, name=None):
    return CartItem(
        pid=pid,
        vid=vid,
        mid=mid,
        name=name or f"Produto {pid}",
        price=Decimal(price),
        unit="kg",
        qty=qty,
        vendor_name=f"Banca {vid}",
    )


class CartTestCase(unittest.TestCase):
    def setUp(self):
        self.store = MemoryCartStore()
        self.cart = Cart(self.store)

    def test_add_and_total(self):
        self.cart.add(cart_item(1, price="8.50", qty=2))
        self.cart.add(cart_item(2, price="3.50"))
        self.assertEqual(self.cart.total, Decimal("20.50"))
        self.assertEqual(self.cart.count, 3)
        self.assertFalse(self.cart.is_empty)
        self.assertEqual(self.store.saves, 2)

    def test_adding_same_product_merges_quantity(self):
        self.cart.add(cart_item(1, qty=2))
        merged = self.cart.add(cart_item(1, qty=3))
        self.assertEqual(merged.qty, 5)
        self.assertEqual(len(self.cart.items), 1)

    def test_add_rejects_bad_quantity_and_price(self):
        with self.assertRaises(ValidationError):
            self.cart.add(cart_item(1, qty=0))
        with self.assertRaises(ValidationError):
            self.cart.add(cart_item(1, price="-2.00"))
        self.assertTrue(self.cart.is_empty)
        self.assertEqual(self.store.saves, 0)

    def test_set_quantity_and_remove(self):
        self.cart.add(cart_item(1, qty=2))
        self.cart.add(cart_item(2))
        self.cart.set_quantity(1, 4)
        self.assertEqual(self.cart.get(1).qty, 4)

        self.cart.set_quantity(1, 0)
        self.assertIsNone(self.cart.get(1))

        self.cart.remove(2)
        self.assertTrue(self.cart.is_empty)

        with self.assertRaises(NotFoundError):
            self.cart.remove(2)
        with self.assertRaises(NotFoundError):
            self.cart.set_quantity(7, 3)

    def test_set_quantity_rejects_non_integers(self):
        self.cart.add(cart_item(1, qty=2))
        saves = self.store.saves
        with self.assertRaises(ValidationError):
            self.cart.set_quantity(1, 2.5)
        with self.assertRaises(ValidationError):
            self.cart.set_quantity(1, "3")
        with self.assertRaises(ValidationError):
            self.cart.set_quantity(1, True)
        self.assertEqual(self.cart.get(1).qty, 2)
        self.assertEqual(self.cart.total, Decimal("17.00"))
        self.assertEqual(self.store.saves, saves)

    def test_clear(self):
        self.cart.add(cart_item(1))
        self.cart.clear()
        self.assertTrue(self.cart.is_empty)
        self.assertEqual(self.cart.total, Decimal("0.00"))

    def test_vendor_groups_keep_first_seen_order(self):
        self.cart.add(cart_item(3, vid=2))
        self.cart.add(cart_item(1, vid=1))
        self.cart.add(cart_item(4, vid=2))
        groups = self.cart.vendor_groups()
        self.assertEqual(list(groups), [(2, 1), (1, 1)])
        self.assertEqual([i.pid for i in groups[(2, 1)]], [3, 4])

    def test_cart_loads_from_store(self):
        store = MemoryCartStore([cart_item(1, qty=2)])
        self.assertEqual(Cart(store).total, Decimal("17.00"))


class JsonFileCartStoreTestCase(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.temp_dir.cleanup()

    def test_cart_survives_reload(self):
        store = JsonFileCartStore.for_user(os.path.join(self.temp_dir.name, "carts"), 7)
        cart = Cart(store)
        cart.add(cart_item(1, price="8.50", qty=2, name="Tomate orgânico"))

        reloaded = Cart(JsonFileCartStore(store.path))
        self.assertEqual(reloaded.items, cart.items)
        self.assertEqual(reloaded.items[0].price, Decimal("8.50"))
        self.assertTrue(store.path.endswith("cart-7.json"))

        with open(store.path, encoding="utf-8") as f:
            saved = json.load(f)
        self.assertEqual(saved[0]["price"], "8.50")

    def test_missing_or_corrupt_file_is_an_empty_cart(self):
        path = os.path.join(self.temp_dir.name, "cart.json")
        self.assertTrue(Cart(JsonFileCartStore(path)).is_empty)

        with open(path, "w", encoding="utf-8") as f:
            f.write("{not json")
        self.assertTrue(Cart(JsonFileCartStore(path)).is_empty)

        with open(path, "w", encoding="utf-8") as f:
            json.dump({"pid": 1}, f)
        self.assertTrue(Cart(JsonFileCartStore(path)).is_empty)

        # a directory where the file should be cannot be read
        os.makedirs(os.path.join(self.temp_dir.name, "cart-dir.json"))
        self.assertTrue(
            Cart(JsonFileCartStore(os.path.join(self.temp_dir.name, "cart-dir.json"))).is_empty
        )

    def test_bad_lines_are_dropped_and_good_ones_kept(self):
        path = os.path.join(self.temp_dir.name, "cart.json")
        good = cart_item(1, price="8.50", qty=2).to_json()
        bad_price = dict(good, pid=2, price="abc")
        zero_qty = dict(good, pid=3, qty=0)
        negative_qty = dict(good, pid=4, qty=-2)
        float_qty = dict(good, pid=5, qty=1.5)
        missing_name = {k: v for k, v in good.items() if k != "name"}
        with open(path, "w", encoding="utf-8") as f:
            json.dump(
                [good, bad_price, zero_qty, negative_qty, float_qty, missing_name], f
            )

        store = JsonFileCartStore(path)
        self.assertEqual([i.pid for i in store.load()], [1])
        cart = Cart(store)
        self.assertEqual(cart.total, Decimal("17.00"))
