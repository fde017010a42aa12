from datetime import date
from decimal import Decimal
from unittest import mock

from helpers import ANA, BRUNO, CARLA, DIEGO, DatabaseTestCase

from feirasmart.db import crud, orders
from feirasmart.db.models import OrderItemRequest, OrderStatus
from feirasmart.utils.errors import (
    AccessDeniedError,
    ConflictError,
    NotFoundError,
    TransientError,
    ValidationError,
)


def item(pid, qty, uprice, name=""):
    return OrderItemRequest(pid=pid, product_name=name, qty=qty, uprice=Decimal(uprice))


class CreateOrderTestCase(DatabaseTestCase):
    async def test_single_vendor_order(self):
        order = await orders.create_order(
            ANA,
            1,
            1,
            [item(1, 2, "8.50", "Tomate orgânico"), item(2, 1, "3.50", "Alface crespa")],
            notes="  Retiro às 8h ",
        )
        self.assertEqual(order.total, Decimal("20.50"))
        self.assertEqual(order.status, OrderStatus.PENDENTE)
        self.assertEqual(order.customer_uid, ANA.uid)
        self.assertEqual((order.vid, order.mid), (1, 1))
        self.assertEqual(order.notes, "Retiro às 8h")
        self.assertEqual([i.line_no for i in order.items], [1, 2])
        self.assertEqual(order.items[0].line_total, Decimal("17.00"))

        # stock went down
        self.assertEqual((await crud.get_product(1)).stock_count, 38)
        self.assertEqual((await crud.get_product(2)).stock_count, 29)

    async def test_snapshot_survives_catalog_changes(self):
        order = await orders.create_order(ANA, 1, 1, [item(1, 1, "8.50", "Tomate")])
        await crud.update_product(CARLA, 1, name="Tomate cereja", price="12.00")

        again = await orders.get_order(ANA, order.ono)
        self.assertEqual(again.items[0].product_name, "Tomate")
        self.assertEqual(again.items[0].uprice, Decimal("8.50"))

    async def test_blank_snapshot_name_falls_back_to_product_name(self):
        order = await orders.create_order(ANA, 1, 1, [item(2, 1, "3.50")])
        self.assertEqual(order.items[0].product_name, "Alface crespa")

    async def test_only_customers_place_orders(self):
        with self.assertRaises(AccessDeniedError):
            await orders.create_order(CARLA, 2, 1, [item(3, 1, "32.00")])

    async def test_request_validation(self):
        with self.assertRaises(ValidationError):
            await orders.create_order(ANA, 1, 1, [])
        with self.assertRaises(ValidationError):
            await orders.create_order(ANA, 1, None, [item(1, 1, "8.50")])
        with self.assertRaises(ValidationError):
            await orders.create_order(ANA, 1, 1, [item(1, 0, "8.50")])
        with self.assertRaises(ValidationError):
            await orders.create_order(ANA, 1, 1, [item(1, 1, "-1.00")])

    async def test_vendor_and_market_are_rechecked(self):
        with self.assertRaises(NotFoundError):
            await orders.create_order(ANA, 99, 1, [item(1, 1, "8.50")])
        # vendor 3 sells at market 2, not 1
        with self.assertRaises(ValidationError):
            await orders.create_order(ANA, 3, 1, [item(6, 1, "6.00")])
        # product 3 belongs to vendor 2
        with self.assertRaises(ValidationError):
            await orders.create_order(ANA, 1, 1, [item(3, 1, "32.00")])
        with self.assertRaises(NotFoundError):
            await orders.create_order(ANA, 1, 1, [item(999, 1, "1.00")])
        self.assertEqual(await self.fetch_value("SELECT COUNT(*) FROM orders;"), 1)

    async def test_unavailable_or_insufficient_stock(self):
        with self.assertRaises(ValidationError):
            await orders.create_order(ANA, 2, 1, [item(5, 1, "15.90")])
        with self.assertRaises(ValidationError):
            await orders.create_order(ANA, 2, 1, [item(4, 9, "18.00")])
        self.assertEqual((await crud.get_product(4)).stock_count, 8)

        # exactly the remaining stock is fine
        order = await orders.create_order(ANA, 2, 1, [item(4, 8, "18.00")])
        self.assertEqual(order.total, Decimal("144.00"))
        self.assertEqual((await crud.get_product(4)).stock_count, 0)

    async def test_failure_on_a_later_line_leaves_nothing_behind(self):
        real_insert = orders._insert_order_item

        async def flaky_insert(conn, ono, line_no, line, vid, created_at):
            if line_no == 2:
                raise TransientError("Database busy, try again.")
            await real_insert(conn, ono, line_no, line, vid, created_at)

        with mock.patch.object(orders, "_insert_order_item", flaky_insert):
            with self.assertRaises(TransientError):
                await orders.create_order(
                    ANA, 1, 1, [item(1, 2, "8.50"), item(2, 1, "3.50")]
                )

        self.assertEqual(await self.fetch_value("SELECT COUNT(*) FROM orders;"), 1)
        self.assertEqual(
            await self.fetch_value("SELECT COUNT(*) FROM order_items WHERE ono > 1;"), 0
        )
        self.assertEqual((await crud.get_product(1)).stock_count, 40)

    async def test_order_total_is_exact(self):
        total = orders.order_total(
            [item(1, 3, "0.10"), item(2, 1, "0.20")]
        )
        self.assertEqual(total, Decimal("0.50"))


class OrderVisibilityTestCase(DatabaseTestCase):
    async def test_customer_sees_only_own_orders(self):
        placed = await orders.create_order(ANA, 1, 1, [item(1, 1, "8.50")])

        mine = await orders.list_orders(ANA)
        self.assertEqual([o.ono for o in mine], [placed.ono])
        self.assertEqual(mine[0].items, ())

        self.assertEqual([o.ono for o in await orders.list_orders(BRUNO)], [1])
        with self.assertRaises(NotFoundError):
            await orders.get_order(BRUNO, placed.ono)

    async def test_vendor_sees_orders_of_own_stalls(self):
        placed = await orders.create_order(ANA, 1, 1, [item(1, 1, "8.50")])

        self.assertEqual([o.ono for o in await orders.list_orders(CARLA)], [placed.ono])
        self.assertEqual([o.ono for o in await orders.list_orders(DIEGO)], [1])

        seeded = await orders.get_order(DIEGO, 1)
        self.assertEqual(len(seeded.items), 2)
        self.assertEqual(seeded.total, Decimal("50.00"))
        with self.assertRaises(NotFoundError):
            await orders.get_order(CARLA, 1)

    async def test_newest_first_and_status_filter(self):
        first = await orders.create_order(ANA, 1, 1, [item(1, 1, "8.50")])
        second = await orders.create_order(ANA, 2, 1, [item(3, 1, "32.00")])
        self.assertEqual(
            [o.ono for o in await orders.list_orders(ANA)], [second.ono, first.ono]
        )

        await orders.update_order_status(DIEGO, second.ono, "confirmado")
        confirmed = await orders.list_orders(ANA, status="confirmado")
        self.assertEqual([o.ono for o in confirmed], [second.ono])
        with self.assertRaises(ValidationError):
            await orders.list_orders(ANA, status="shipped")

    async def test_anonymous_callers_are_refused(self):
        with self.assertRaises(AccessDeniedError):
            await orders.list_orders(None)


class OrderStatusTestCase(DatabaseTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.order = await orders.create_order(
            ANA, 1, 1, [item(1, 4, "8.50"), item(2, 2, "3.50")]
        )

    def test_allowed_transitions(self):
        self.assertEqual(
            orders.allowed_transitions(OrderStatus.PENDENTE),
            (
                OrderStatus.CONFIRMADO,
                OrderStatus.PRONTO,
                OrderStatus.ENTREGUE,
                OrderStatus.CANCELADO,
            ),
        )
        self.assertEqual(
            orders.allowed_transitions(OrderStatus.PRONTO),
            (OrderStatus.ENTREGUE, OrderStatus.CANCELADO),
        )
        self.assertEqual(orders.allowed_transitions(OrderStatus.ENTREGUE), ())
        self.assertEqual(orders.allowed_transitions(OrderStatus.CANCELADO), ())

    async def test_forward_moves(self):
        updated = await orders.update_order_status(CARLA, self.order.ono, "confirmado")
        self.assertEqual(updated.status, OrderStatus.CONFIRMADO)
        self.assertGreaterEqual(updated.updated_at, self.order.updated_at)

        # steps may be skipped
        updated = await orders.update_order_status(CARLA, self.order.ono, "entregue")
        self.assertEqual(updated.status, OrderStatus.ENTREGUE)

        with self.assertRaises(ConflictError):
            await orders.update_order_status(CARLA, self.order.ono, "cancelado")

    async def test_backward_and_same_state_moves_conflict(self):
        await orders.update_order_status(CARLA, self.order.ono, "pronto")
        with self.assertRaises(ConflictError):
            await orders.update_order_status(CARLA, self.order.ono, "confirmado")
        with self.assertRaises(ConflictError):
            await orders.update_order_status(CARLA, self.order.ono, "pronto")
        self.assertEqual(
            (await orders.get_order(CARLA, self.order.ono)).status, OrderStatus.PRONTO
        )

    async def test_unknown_status(self):
        with self.assertRaises(ValidationError):
            await orders.update_order_status(CARLA, self.order.ono, "enviado")

    async def test_other_vendor_gets_not_found(self):
        with self.assertRaises(NotFoundError):
            await orders.update_order_status(DIEGO, self.order.ono, "entregue")
        self.assertEqual(
            (await orders.get_order(ANA, self.order.ono)).status, OrderStatus.PENDENTE
        )

    async def test_customers_cannot_change_status(self):
        with self.assertRaises(AccessDeniedError):
            await orders.update_order_status(ANA, self.order.ono, "cancelado")

    async def test_cancel_restores_stock(self):
        self.assertEqual((await crud.get_product(1)).stock_count, 36)
        cancelled = await orders.update_order_status(CARLA, self.order.ono, "cancelado")
        self.assertEqual(cancelled.status, OrderStatus.CANCELADO)
        self.assertEqual((await crud.get_product(1)).stock_count, 40)
        self.assertEqual((await crud.get_product(2)).stock_count, 30)

    async def test_cancel_skips_deleted_products(self):
        await crud.delete_product(CARLA, 2)
        await orders.update_order_status(CARLA, self.order.ono, "cancelado")
        self.assertEqual((await crud.get_product(1)).stock_count, 40)
        # the order still carries its copy of the deleted line
        again = await orders.get_order(ANA, self.order.ono)
        self.assertEqual(again.items[1].product_name, "Alface crespa")


class VendorDashboardTestCase(DatabaseTestCase):
    async def test_dashboard_figures(self):
        placed = await orders.create_order(ANA, 1, 1, [item(1, 2, "8.50")])
        await orders.create_order(BRUNO, 1, 1, [item(2, 1, "3.50")])
        today = placed.created_at.date()

        stats = await orders.vendor_dashboard_stats(CARLA, today=today)
        self.assertEqual(stats["active_products"], 3)
        self.assertEqual(stats["orders_today"], 2)
        self.assertEqual(stats["revenue_today"], Decimal("20.50"))
        self.assertEqual(stats["growth_pct"], 100.0)

        await orders.update_order_status(CARLA, placed.ono, "cancelado")
        stats = await orders.vendor_dashboard_stats(CARLA, today=today)
        self.assertEqual(stats["orders_today"], 2)
        self.assertEqual(stats["revenue_today"], Decimal("3.50"))

    async def test_quiet_day(self):
        stats = await orders.vendor_dashboard_stats(DIEGO, today=date(2030, 1, 1))
        self.assertEqual(stats["orders_today"], 0)
        self.assertEqual(stats["revenue_today"], Decimal("0.00"))
        self.assertEqual(stats["growth_pct"], 0.0)
        self.assertEqual(stats["active_products"], 2)

    async def test_customers_have_no_dashboard(self):
        with self.assertRaises(AccessDeniedError):
            await orders.vendor_dashboard_stats(ANA)
