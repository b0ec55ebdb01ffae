import asyncio
import re
import sqlite3
import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest import mock

from dbcase import DbTestCase

from starfood.db import crud, models, orders
from starfood.db import database as db_database
from starfood.utils import lifecycle
from starfood.utils.errors import BadRequest, Conflict, InvalidTransition, NotFound

CLASSIC_BURGER = 1  # 1000, 20% off -> 800
CHEESE_BURGER = 2  # 1200, no discount
MARGHERITA = 3  # 2500, 10% off -> 2250


class CheckoutTestCase(DbTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.user = await self.make_user()
        self.address = await self.make_address(self.user.id)

    async def checkout(self, code=None, notes=None, user_id=None, address_id=None):
        return await orders.create_order(
            user_id or self.user.id,
            models.OrderCreate(
                address_id=address_id or self.address.id, discount_code=code, notes=notes
            ),
        )

    async def used_count(self, code: str) -> int:
        return await self.scalar("SELECT used_count FROM discounts WHERE code = ?;", (code,))

    async def assert_nothing_written(self, cart_quantity: int, code: str = "SAVE10", used: int = 0):
        self.assertEqual(await self.scalar("SELECT COUNT(*) FROM orders;"), 0)
        self.assertEqual(await self.scalar("SELECT COUNT(*) FROM order_items;"), 0)
        self.assertEqual(await crud.cart_item_count(self.user.id), cart_quantity)
        self.assertEqual(await self.used_count(code), used)

    # ---------- Happy path ----------

    async def test_end_to_end_checkout(self):
        await crud.add_cart_item(self.user.id, CLASSIC_BURGER, 2)

        detail = await self.checkout(code="save10", notes="Ring twice")
        order = detail.order

        self.assertRegex(order.order_number, r"^ORD-\d{8}-[0-9A-F]{8}$")
        self.assertEqual(order.status, "pending")
        self.assertEqual(order.subtotal, Decimal("1600"))
        self.assertEqual(order.discount_amount, Decimal("160"))
        self.assertEqual(order.delivery_cost, Decimal("25000"))
        self.assertEqual(order.total_amount, Decimal("26440"))
        self.assertEqual(order.notes, "Ring twice")
        self.assertEqual(detail.discount_code, "SAVE10")
        self.assertEqual(detail.address.id, self.address.id)

        self.assertEqual(len(detail.items), 1)
        item = detail.items[0]
        self.assertEqual(item.product_name, "Classic Burger")
        self.assertEqual(item.quantity, 2)
        self.assertEqual(item.unit_price, Decimal("800"))
        self.assertEqual(item.total_price, Decimal("1600"))

        self.assertEqual(await self.used_count("SAVE10"), 1)
        cart = await crud.get_cart(self.user.id)
        self.assertIsNotNone(cart.id)
        self.assertEqual(cart.lines, [])

    async def test_total_invariant_over_mixed_cart(self):
        await crud.add_cart_item(self.user.id, CLASSIC_BURGER, 1)
        await crud.add_cart_item(self.user.id, CHEESE_BURGER, 3)
        await crud.add_cart_item(self.user.id, MARGHERITA, 2)

        detail = await self.checkout(code="CAP50")
        order = detail.order

        self.assertEqual(order.subtotal, sum(i.total_price for i in detail.items))
        self.assertEqual(order.subtotal, Decimal("800") + Decimal("3600") + Decimal("4500"))
        self.assertEqual(order.discount_amount, Decimal("50"))
        self.assertEqual(
            order.total_amount,
            order.subtotal - order.discount_amount + order.delivery_cost,
        )
        for item in detail.items:
            self.assertEqual(item.total_price, item.unit_price * item.quantity)

    async def test_fixed_discount_above_minimum(self):
        await crud.add_cart_item(self.user.id, MARGHERITA, 1)
        detail = await self.checkout(code="FIXED500")
        self.assertEqual(detail.order.discount_amount, Decimal("500"))
        self.assertEqual(detail.order.total_amount, Decimal("2250") - 500 + 25000)

    async def test_without_code(self):
        await crud.add_cart_item(self.user.id, CHEESE_BURGER, 1)
        detail = await self.checkout()
        self.assertIsNone(detail.order.discount_id)
        self.assertIsNone(detail.discount_code)
        self.assertEqual(detail.order.discount_amount, Decimal("0"))
        self.assertEqual(detail.order.total_amount, Decimal("26200"))

    # ---------- Snapshots ----------

    async def test_snapshot_survives_product_changes(self):
        await crud.add_cart_item(self.user.id, CLASSIC_BURGER, 2)
        detail = await self.checkout()

        await crud.update_product(
            CLASSIC_BURGER,
            models.ProductUpdate(name="Renamed Burger", price=Decimal("5000"), discount=0),
        )
        again = await orders.get_order_detail(detail.order.id, self.user.id)
        self.assertEqual(again.items[0].product_name, "Classic Burger")
        self.assertEqual(again.items[0].unit_price, Decimal("800"))

        await crud.delete_product(CLASSIC_BURGER)
        again = await orders.get_order_detail(detail.order.id, self.user.id)
        self.assertEqual(again.items[0].product_id, CLASSIC_BURGER)
        self.assertEqual(again.items[0].total_price, Decimal("1600"))
        self.assertEqual(again.order.total_amount, detail.order.total_amount)

    # ---------- Failure paths roll back everything ----------

    async def test_foreign_address_rejected(self):
        other = await self.make_user("other@example.com", "09120000002")
        other_address = await self.make_address(other.id)
        await crud.add_cart_item(self.user.id, CLASSIC_BURGER, 2)

        with self.assertRaises(NotFound) as ctx:
            await self.checkout(code="SAVE10", address_id=other_address.id)
        self.assertEqual(ctx.exception.message, "Address not found")
        await self.assert_nothing_written(cart_quantity=2)

    async def test_empty_cart_rejected(self):
        with self.assertRaises(BadRequest) as ctx:
            await self.checkout()
        self.assertEqual(ctx.exception.message, "Cart is empty")

        # cart row exists but has no items
        await crud.add_cart_item(self.user.id, CLASSIC_BURGER, 1)
        await crud.clear_cart(self.user.id)
        with self.assertRaises(BadRequest):
            await self.checkout(code="SAVE10")
        await self.assert_nothing_written(cart_quantity=0)

    async def test_unavailable_product_rejected(self):
        await crud.add_cart_item(self.user.id, CLASSIC_BURGER, 1)
        await crud.add_cart_item(self.user.id, CHEESE_BURGER, 1)
        await crud.set_product_availability(CHEESE_BURGER, False)

        with self.assertRaises(BadRequest) as ctx:
            await self.checkout(code="SAVE10")
        self.assertEqual(ctx.exception.message, "Some products are unavailable: Cheese Burger")
        await self.assert_nothing_written(cart_quantity=2)

    async def test_invalid_codes_rejected(self):
        await crud.add_cart_item(self.user.id, CLASSIC_BURGER, 2)
        for code in ("NOPE", "EXPIRED", "INACTIVE", "FUTURE"):
            with self.subTest(code=code):
                with self.assertRaises(BadRequest) as ctx:
                    await self.checkout(code=code)
                self.assertEqual(ctx.exception.message, "Invalid or expired discount code")
        await self.assert_nothing_written(cart_quantity=2)

    async def test_exhausted_code_rejected(self):
        await crud.add_cart_item(self.user.id, CLASSIC_BURGER, 2)
        with self.assertRaises(BadRequest) as ctx:
            await self.checkout(code="ONESHOT")
        self.assertEqual(ctx.exception.message, "Discount code usage limit reached")
        await self.assert_nothing_written(cart_quantity=2, code="ONESHOT", used=1)

    async def test_below_minimum_rejected(self):
        await crud.add_cart_item(self.user.id, CLASSIC_BURGER, 1)
        with self.assertRaises(BadRequest) as ctx:
            await self.checkout(code="FIXED500")
        self.assertEqual(
            ctx.exception.message, "Minimum order amount for this discount is 2000"
        )
        await self.assert_nothing_written(cart_quantity=1, code="FIXED500")

    async def test_discount_above_order_total_rejected(self):
        await crud.create_discount(
            "huge",
            "fixed",
            Decimal("30000"),
            start_date=datetime(2020, 1, 1, tzinfo=timezone.utc),
            expire_date=datetime(2099, 1, 1, tzinfo=timezone.utc),
            usage_limit=10,
        )
        await crud.add_cart_item(self.user.id, CLASSIC_BURGER, 1)
        with self.assertRaises(BadRequest) as ctx:
            await self.checkout(code="HUGE")
        self.assertEqual(ctx.exception.message, "Total amount cannot be negative")
        await self.assert_nothing_written(cart_quantity=1, code="HUGE")

    async def test_rejected_discounts_are_logged(self):
        await crud.add_cart_item(self.user.id, CLASSIC_BURGER, 1)
        for code in ("NOPE", "ONESHOT", "FIXED500"):
            with self.subTest(code=code):
                with self.assertLogs("starfood.db.orders", level="INFO") as logs:
                    with self.assertRaises(BadRequest):
                        await self.checkout(code=code)
                self.assertIn(f"Discount {code} rejected", logs.output[-1])

    async def test_revenue_exact_for_fractional_prices(self):
        async with db_database.connect() as conn:
            await conn.execute("UPDATE products SET price = ? WHERE id = 5;", (Decimal("0.1"),))
        for _ in range(3):
            await crud.add_cart_item(self.user.id, 5, 1)
            detail = await self.checkout()
            self.assertEqual(detail.order.total_amount, Decimal("25000.1"))

        stats = await orders.get_order_stats()
        self.assertEqual(stats["today_orders"], 3)
        self.assertEqual(stats["today_revenue"], Decimal("75000.3"))

    async def test_failure_after_usage_increment_rolls_back(self):
        await crud.add_cart_item(self.user.id, CLASSIC_BURGER, 2)
        with mock.patch.object(
            orders, "_insert_order", side_effect=RuntimeError("disk full")
        ):
            with self.assertRaises(RuntimeError):
                await self.checkout(code="SAVE10")
        await self.assert_nothing_written(cart_quantity=2)

    # ---------- Usage limit ----------

    async def test_usage_limit_enforced_across_users(self):
        await crud.create_discount(
            "once",
            "percentage",
            Decimal("10"),
            start_date=datetime(2020, 1, 1, tzinfo=timezone.utc),
            expire_date=datetime(2099, 1, 1, tzinfo=timezone.utc),
            usage_limit=1,
        )
        other = await self.make_user("other@example.com", "09120000002")
        other_address = await self.make_address(other.id)
        await crud.add_cart_item(self.user.id, CLASSIC_BURGER, 1)
        await crud.add_cart_item(other.id, CLASSIC_BURGER, 1)

        await self.checkout(code="ONCE")
        with self.assertRaises(BadRequest) as ctx:
            await self.checkout(code="ONCE", user_id=other.id, address_id=other_address.id)
        self.assertEqual(ctx.exception.message, "Discount code usage limit reached")
        self.assertEqual(await self.used_count("ONCE"), 1)
        self.assertEqual(await crud.cart_item_count(other.id), 1)

    async def test_concurrent_checkouts_share_one_use(self):
        await crud.create_discount(
            "RACE",
            "fixed",
            Decimal("100"),
            start_date=datetime(2020, 1, 1, tzinfo=timezone.utc),
            expire_date=datetime(2099, 1, 1, tzinfo=timezone.utc),
            usage_limit=1,
        )
        other = await self.make_user("other@example.com", "09120000002")
        other_address = await self.make_address(other.id)
        await crud.add_cart_item(self.user.id, CLASSIC_BURGER, 1)
        await crud.add_cart_item(other.id, CLASSIC_BURGER, 1)

        results = await asyncio.gather(
            self.checkout(code="RACE"),
            self.checkout(code="RACE", user_id=other.id, address_id=other_address.id),
            return_exceptions=True,
        )
        successes = [r for r in results if isinstance(r, models.OrderDetail)]
        failures = [r for r in results if isinstance(r, BadRequest)]
        self.assertEqual(len(successes), 1)
        self.assertEqual(len(failures), 1)
        self.assertEqual(await self.used_count("RACE"), 1)
        self.assertEqual(await self.scalar("SELECT COUNT(*) FROM orders;"), 1)

    # ---------- Order numbers ----------

    async def test_order_number_collision_is_retried(self):
        await crud.add_cart_item(self.user.id, CLASSIC_BURGER, 1)
        with mock.patch.object(
            orders, "generate_order_number", return_value="ORD-20250101-AAAAAAAA"
        ):
            first = await self.checkout()
        self.assertEqual(first.order.order_number, "ORD-20250101-AAAAAAAA")

        await crud.add_cart_item(self.user.id, CLASSIC_BURGER, 1)
        with mock.patch.object(
            orders,
            "generate_order_number",
            side_effect=["ORD-20250101-AAAAAAAA", "ORD-20250101-BBBBBBBB"],
        ):
            second = await self.checkout()
        self.assertEqual(second.order.order_number, "ORD-20250101-BBBBBBBB")

    async def test_order_number_gives_up_after_attempts(self):
        await crud.add_cart_item(self.user.id, CLASSIC_BURGER, 1)
        with mock.patch.object(
            orders, "generate_order_number", return_value="ORD-20250101-AAAAAAAA"
        ):
            await self.checkout()
            await crud.add_cart_item(self.user.id, CLASSIC_BURGER, 1)
            with self.assertRaises(sqlite3.IntegrityError):
                await self.checkout(code="SAVE10")
        self.assertEqual(await self.scalar("SELECT COUNT(*) FROM orders;"), 1)
        self.assertEqual(await crud.cart_item_count(self.user.id), 1)
        self.assertEqual(await self.used_count("SAVE10"), 0)

    def test_generate_order_number_format(self):
        number = orders.generate_order_number(datetime(2025, 3, 9, tzinfo=timezone.utc))
        self.assertTrue(re.fullmatch(r"ORD-20250309-[0-9A-F]{8}", number))


class OrderLifecycleTestCase(DbTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.user = await self.make_user()
        self.address = await self.make_address(self.user.id)
        await crud.add_cart_item(self.user.id, CLASSIC_BURGER, 1)
        detail = await orders.create_order(
            self.user.id, models.OrderCreate(address_id=self.address.id)
        )
        self.order_id = detail.order.id

    async def force_status(self, status: str) -> None:
        async with db_database.connect() as conn:
            await conn.execute(
                "UPDATE orders SET status = ?, estimated_delivery = NULL WHERE id = ?;",
                (status, self.order_id),
            )

    async def status(self) -> str:
        return await self.scalar("SELECT status FROM orders WHERE id = ?;", (self.order_id,))

    async def test_full_transition_grid(self):
        for current in lifecycle.ORDER_STATUSES:
            for target in lifecycle.ORDER_STATUSES:
                with self.subTest(current=current, target=target):
                    await self.force_status(current)
                    if lifecycle.can_transition(current, target):
                        order = await orders.transition_order(self.order_id, target)
                        self.assertEqual(order.status, target)
                        self.assertEqual(await self.status(), target)
                    else:
                        with self.assertRaises(InvalidTransition):
                            await orders.transition_order(self.order_id, target)
                        self.assertEqual(await self.status(), current)

    async def test_estimated_delivery_only_for_non_terminal(self):
        eta = datetime(2030, 1, 1, 12, 30, tzinfo=timezone.utc)
        order = await orders.transition_order(self.order_id, "confirmed", eta)
        self.assertEqual(order.estimated_delivery, db_database.to_timestamp(eta))

        await self.force_status("delivering")
        order = await orders.transition_order(
            self.order_id, "delivered", eta + timedelta(hours=1)
        )
        self.assertEqual(order.status, "delivered")
        self.assertIsNone(order.estimated_delivery)

    async def test_missing_order(self):
        with self.assertRaises(NotFound):
            await orders.transition_order(424242, "confirmed")

    async def test_stale_status_is_a_conflict(self):
        async with db_database.connect() as conn:
            with self.assertRaises(Conflict):
                await orders._persist_transition(
                    conn, self.order_id, "confirmed", "preparing", None
                )
        self.assertEqual(await self.status(), "pending")

    async def test_customer_cancel(self):
        detail = await orders.cancel_order(self.order_id, self.user.id)
        self.assertEqual(detail.order.status, "cancelled")

        with self.assertRaises(BadRequest) as ctx:
            await orders.cancel_order(self.order_id, self.user.id)
        self.assertEqual(ctx.exception.message, "Only pending orders can be cancelled")

    async def test_customer_cannot_cancel_after_confirmation(self):
        await orders.update_order_status(self.order_id, "confirmed")
        with self.assertRaises(BadRequest):
            await orders.cancel_order(self.order_id, self.user.id)
        self.assertEqual(await self.status(), "confirmed")

    async def test_cancel_foreign_order(self):
        other = await self.make_user("other@example.com", "09120000002")
        with self.assertRaises(NotFound):
            await orders.cancel_order(self.order_id, other.id)
        with self.assertRaises(NotFound):
            await orders.get_order_detail(self.order_id, other.id)

    async def test_update_order_status_returns_admin_detail(self):
        detail = await orders.update_order_status(self.order_id, "confirmed")
        self.assertEqual(detail.order.status, "confirmed")
        self.assertEqual(detail.user.email, "jane@example.com")


class OrderReadsTestCase(DbTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.user = await self.make_user()
        self.address = await self.make_address(self.user.id)
        self.ids = []
        for product_id in (CLASSIC_BURGER, CHEESE_BURGER, MARGHERITA):
            await crud.add_cart_item(self.user.id, product_id, 1)
            detail = await orders.create_order(
                self.user.id, models.OrderCreate(address_id=self.address.id)
            )
            self.ids.append(detail.order.id)

    async def test_list_user_orders(self):
        summaries, total = await orders.list_user_orders(self.user.id, 1, 2)
        self.assertEqual(total, 3)
        self.assertEqual([s.order.id for s in summaries], self.ids[::-1][:2])
        self.assertTrue(all(s.item_count == 1 for s in summaries))

        await orders.cancel_order(self.ids[0], self.user.id)
        summaries, total = await orders.list_user_orders(self.user.id, 1, 10, "cancelled")
        self.assertEqual(total, 1)
        self.assertEqual(summaries[0].order.id, self.ids[0])

    async def test_list_orders_admin_filters(self):
        summaries, total = await orders.list_orders_admin(1, 10)
        self.assertEqual(total, 3)
        self.assertEqual(summaries[0].user.email, "jane@example.com")

        detail = await orders.get_order_detail_admin(self.ids[1])
        fragment = detail.order.order_number[-6:].lower()
        summaries, total = await orders.list_orders_admin(1, 10, search=fragment)
        self.assertEqual(total, 1)
        self.assertEqual(summaries[0].order.id, self.ids[1])

        for pattern in ("%", "ORD_"):
            _, total = await orders.list_orders_admin(1, 10, search=pattern)
            self.assertEqual(total, 0)

        future = datetime.now(timezone.utc) + timedelta(days=1)
        _, total = await orders.list_orders_admin(1, 10, start_date=future)
        self.assertEqual(total, 0)

    async def test_order_stats(self):
        await orders.cancel_order(self.ids[0], self.user.id)
        await orders.update_order_status(self.ids[1], "confirmed")

        stats = await orders.get_order_stats()
        self.assertEqual(stats["total"], 3)
        self.assertEqual(set(stats["by_status"]), set(lifecycle.ORDER_STATUSES))
        self.assertEqual(stats["by_status"]["cancelled"], 1)
        self.assertEqual(stats["by_status"]["confirmed"], 1)
        self.assertEqual(stats["by_status"]["pending"], 1)
        self.assertEqual(stats["by_status"]["delivered"], 0)
        self.assertEqual(stats["today_orders"], 3)
        # 1200 + 2250 plus delivery on each
        self.assertEqual(stats["today_revenue"], Decimal("1200") + Decimal("2250") + 50000)

        tomorrow = await orders.get_order_stats(datetime.now(timezone.utc) + timedelta(days=1))
        self.assertEqual(tomorrow["today_orders"], 0)
        self.assertEqual(tomorrow["today_revenue"], Decimal("0"))


if __name__ == "__main__":
    unittest.main()
