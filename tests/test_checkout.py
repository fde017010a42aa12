from decimal import Decimal

from helpers import ANA, DatabaseTestCase

from feirasmart.cart import Cart, CartItem, MemoryCartStore
from feirasmart.checkout import CheckoutError, checkout, group_cart_items
from feirasmart.db import orders
from feirasmart.utils.errors import TransientError, ValidationError


def cart_item(pid, vid, mid, price, qty=1, vendor_name=""):
    return CartItem(
        pid=pid,
        vid=vid,
        mid=mid,
        name=f"Produto {pid}",
        price=Decimal(price),
        unit="unidade",
        qty=qty,
        vendor_name=vendor_name,
    )


class GroupingTestCase(DatabaseTestCase):
    def test_one_request_per_vendor_and_market(self):
        requests = group_cart_items(
            [
                cart_item(1, 1, 1, "8.50", 2, "Sítio da Carla"),
                cart_item(3, 2, 1, "32.00"),
                cart_item(2, 1, 1, "3.50"),
                cart_item(6, 3, 2, "6.00"),
            ]
        )
        self.assertEqual([(r.vid, r.mid) for r in requests], [(1, 1), (2, 1), (3, 2)])
        self.assertEqual([i.pid for i in requests[0].items], [1, 2])
        self.assertEqual(requests[0].items[0].qty, 2)
        self.assertEqual(requests[0].vendor_name, "Sítio da Carla")

    async def test_missing_market_fails_before_submitting(self):
        calls = []

        async def submit(*args):
            calls.append(args)

        cart = Cart(MemoryCartStore())
        cart.add(cart_item(1, 1, 1, "8.50"))
        cart.add(cart_item(3, 2, None, "32.00"))

        with self.assertRaises(ValidationError) as ctx:
            await checkout(cart, ANA, submit=submit)
        self.assertEqual(ctx.exception.message, "missing market association")
        self.assertEqual(calls, [])
        self.assertEqual(len(cart.items), 2)

    async def test_empty_cart(self):
        with self.assertRaises(ValidationError):
            await checkout(Cart(MemoryCartStore()), ANA)


class CheckoutTestCase(DatabaseTestCase):
    async def test_single_vendor_checkout(self):
        cart = Cart(MemoryCartStore())
        cart.add(cart_item(1, 1, 1, "8.50", 2))
        cart.add(cart_item(2, 1, 1, "3.50"))

        result = await checkout(cart, ANA, notes="Retiro às 8h")
        self.assertEqual(len(result.order_ids), 1)
        self.assertEqual(result.orders[0].total, Decimal("20.50"))
        self.assertEqual(result.orders[0].notes, "Retiro às 8h")
        self.assertTrue(cart.is_empty)

    async def test_multi_vendor_checkout(self):
        cart = Cart(MemoryCartStore())
        cart.add(cart_item(1, 1, 1, "10.00"))
        cart.add(cart_item(3, 2, 1, "5.00"))

        result = await checkout(cart, ANA)
        self.assertEqual(
            [o.total for o in result.orders], [Decimal("10.00"), Decimal("5.00")]
        )
        self.assertEqual([o.vid for o in result.orders], [1, 2])
        listed = await orders.list_orders(ANA)
        self.assertEqual(sorted(o.ono for o in listed), sorted(result.order_ids))
        self.assertTrue(cart.is_empty)

    async def test_partial_failure_keeps_cart_and_reports_each_vendor(self):
        async def submit(identity, vid, mid, items, notes):
            if vid == 2:
                raise TransientError("Database busy, try again.")
            return await orders.create_order(identity, vid, mid, items, notes)

        cart = Cart(MemoryCartStore())
        cart.add(cart_item(1, 1, 1, "10.00"))
        cart.add(cart_item(3, 2, 1, "5.00"))

        with self.assertRaises(CheckoutError) as ctx:
            await checkout(cart, ANA, submit=submit)
        error = ctx.exception

        self.assertEqual(len(cart.items), 2)
        self.assertEqual([o.request.vid for o in error.succeeded], [1])
        self.assertEqual([o.request.vid for o in error.failed], [2])
        self.assertIsInstance(error.failed[0].error, TransientError)
        self.assertTrue(error.retryable)

        # the first vendor's order was not rolled back
        placed = error.succeeded[0].order
        stored = await orders.get_order(ANA, placed.ono)
        self.assertEqual(stored.total, Decimal("10.00"))

    async def test_stock_failure_is_not_retryable(self):
        cart = Cart(MemoryCartStore())
        cart.add(cart_item(1, 1, 1, "8.50"))
        cart.add(cart_item(4, 2, 1, "18.00", qty=50))

        with self.assertRaises(CheckoutError) as ctx:
            await checkout(cart, ANA)
        self.assertFalse(ctx.exception.retryable)
        self.assertIsInstance(ctx.exception.failed[0].error, ValidationError)
        self.assertFalse(cart.is_empty)
