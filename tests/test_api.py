import asyncio
import unittest

from dbcase import use_temp_db
from fastapi.testclient import TestClient

from starfood.db import crud
from starfood.main import app

PASSWORD = "Secret123"


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        use_temp_db(self)
        self.client = TestClient(app)

    def register(self, email="jane@example.com", phone="09120000001") -> dict:
        resp = self.client.post(
            "/api/auth/register",
            json={
                "firstName": "Jane",
                "lastName": "Doe",
                "email": email,
                "password": PASSWORD,
                "phoneNumber": phone,
            },
        )
        self.assertEqual(resp.status_code, 201, resp.text)
        return resp.json()["body"]

    def auth(self, token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    def customer(self) -> dict:
        return self.auth(self.register()["accessToken"])

    def admin(self) -> dict:
        asyncio.run(
            crud.register_user(
                "Ada", "Admin", "admin@example.com", PASSWORD, "09129999999", role="admin"
            )
        )
        resp = self.client.post(
            "/api/auth/login", json={"email": "admin@example.com", "password": PASSWORD}
        )
        return self.auth(resp.json()["body"]["accessToken"])

    def place_order(self, headers: dict, code=None) -> dict:
        resp = self.client.post(
            "/api/addresses",
            json={
                "title": "Home",
                "street": "12 Baker Street",
                "city": "London",
                "phoneNumber": "09120000001",
            },
            headers=headers,
        )
        self.assertEqual(resp.status_code, 201, resp.text)
        address_id = resp.json()["body"]["id"]

        resp = self.client.post(
            "/api/cart/items", json={"productId": 1, "quantity": 2}, headers=headers
        )
        self.assertEqual(resp.status_code, 201, resp.text)

        payload = {"addressId": address_id}
        if code:
            payload["discountCode"] = code
        resp = self.client.post("/api/orders", json=payload, headers=headers)
        self.assertEqual(resp.status_code, 201, resp.text)
        return resp.json()["body"]

    # ---------- Envelope & auth ----------

    def test_register_login_me(self):
        body = self.register()
        self.assertEqual(body["user"]["email"], "jane@example.com")
        self.assertIn("refreshToken", body)

        resp = self.client.post(
            "/api/auth/login", json={"email": "jane@example.com", "password": PASSWORD}
        )
        data = resp.json()
        self.assertTrue(data["success"])
        self.assertEqual(data["status"], 200)

        me = self.client.get("/api/auth/me", headers=self.auth(data["body"]["accessToken"]))
        self.assertEqual(me.json()["body"]["fullName"], "Jane Doe")

        refreshed = self.client.post(
            "/api/auth/refresh", json={"refreshToken": data["body"]["refreshToken"]}
        )
        self.assertEqual(refreshed.status_code, 200)
        self.assertIn("accessToken", refreshed.json()["body"])

    def test_bad_credentials_and_missing_token(self):
        self.register()
        resp = self.client.post(
            "/api/auth/login", json={"email": "jane@example.com", "password": "Wrong1234"}
        )
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(
            resp.json(),
            {"success": False, "message": "Invalid email or password", "body": None, "status": 401},
        )

        resp = self.client.get("/api/cart")
        self.assertEqual(resp.status_code, 401)
        resp = self.client.get("/api/cart", headers=self.auth("not-a-token"))
        self.assertEqual(resp.status_code, 401)

    def test_duplicate_registration_conflict(self):
        self.register()
        resp = self.client.post(
            "/api/auth/register",
            json={
                "firstName": "Jane",
                "lastName": "Doe",
                "email": "jane@example.com",
                "password": PASSWORD,
                "phoneNumber": "09120000002",
            },
        )
        self.assertEqual(resp.status_code, 409)

    def test_validation_errors_are_400(self):
        resp = self.client.post(
            "/api/auth/register",
            json={"firstName": "J", "lastName": "Doe", "email": "bad", "password": "weak"},
        )
        self.assertEqual(resp.status_code, 400)
        data = resp.json()
        self.assertFalse(data["success"])
        self.assertIn(" | ", data["message"])

    def test_unknown_route(self):
        resp = self.client.get("/api/nope")
        self.assertEqual(resp.status_code, 404)
        self.assertFalse(resp.json()["success"])

    # ---------- Catalog ----------

    def test_catalog(self):
        resp = self.client.get("/api/products", params={"categoryId": 1, "limit": 1})
        body = resp.json()["body"]
        self.assertEqual(body["pagination"]["totalItems"], 2)
        self.assertTrue(body["pagination"]["hasNextPage"])
        self.assertEqual(len(body["items"]), 1)

        burger = self.client.get("/api/products/1").json()["body"]
        self.assertEqual(burger["finalPrice"], 800)
        self.assertEqual(self.client.get("/api/products/4").status_code, 404)

        categories = self.client.get("/api/categories").json()["body"]
        self.assertEqual(len(categories), 4)

    # ---------- Checkout ----------

    def test_checkout_over_http(self):
        headers = self.customer()
        order = self.place_order(headers, code="save10")
        self.assertEqual(order["subtotal"], 1600)
        self.assertEqual(order["discountAmount"], 160)
        self.assertEqual(order["deliveryCost"], 25000)
        self.assertEqual(order["totalAmount"], 26440)
        self.assertEqual(order["discountCode"], "SAVE10")
        self.assertEqual(order["items"][0]["unitPrice"], 800)

        cart = self.client.get("/api/cart", headers=headers).json()["body"]
        self.assertEqual(cart["items"], [])

        listing = self.client.get("/api/orders", headers=headers).json()["body"]
        self.assertEqual(listing["pagination"]["totalItems"], 1)
        self.assertEqual(listing["items"][0]["itemCount"], 1)

        detail = self.client.get(f"/api/orders/{order['id']}", headers=headers)
        self.assertEqual(detail.status_code, 200)

    def test_checkout_with_empty_cart(self):
        headers = self.customer()
        resp = self.client.post("/api/addresses", json={
            "title": "Home", "street": "12 Baker Street", "city": "London",
            "phoneNumber": "09120000001",
        }, headers=headers)
        address_id = resp.json()["body"]["id"]
        resp = self.client.post("/api/orders", json={"addressId": address_id}, headers=headers)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["message"], "Cart is empty")

    def test_cancel(self):
        headers = self.customer()
        order = self.place_order(headers)
        resp = self.client.post(f"/api/orders/{order['id']}/cancel", headers=headers)
        self.assertEqual(resp.json()["body"]["status"], "cancelled")
        resp = self.client.post(f"/api/orders/{order['id']}/cancel", headers=headers)
        self.assertEqual(resp.status_code, 400)

    # ---------- Admin ----------

    def test_admin_requires_role(self):
        headers = self.customer()
        resp = self.client.get("/api/admin/orders/stats", headers=headers)
        self.assertEqual(resp.status_code, 403)

    def test_admin_status_updates_and_stats(self):
        order = self.place_order(self.customer())
        admin = self.admin()
        url = f"/api/admin/orders/{order['id']}/status"

        resp = self.client.patch(url, json={"status": "delivered"}, headers=admin)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(
            resp.json()["message"], "Cannot change status from 'pending' to 'delivered'"
        )

        resp = self.client.patch(
            url,
            json={"status": "confirmed", "estimatedDelivery": "2030-01-01T12:00:00Z"},
            headers=admin,
        )
        self.assertEqual(resp.status_code, 200)
        body = resp.json()["body"]
        self.assertEqual(body["status"], "confirmed")
        self.assertTrue(body["estimatedDelivery"].startswith("2030-01-01T12:00:00"))
        self.assertEqual(body["user"]["email"], "jane@example.com")

        resp = self.client.patch(url, json={"status": "shipped"}, headers=admin)
        self.assertEqual(resp.status_code, 400)

        stats = self.client.get("/api/admin/orders/stats", headers=admin).json()["body"]
        self.assertEqual(stats["total"], 1)
        self.assertEqual(stats["confirmed"], 1)
        self.assertEqual(stats["pending"], 0)
        self.assertEqual(stats["todayOrders"], 1)
        self.assertEqual(stats["todayRevenue"], 26600)

    def test_admin_catalog_and_discounts(self):
        admin = self.admin()
        resp = self.client.post(
            "/api/admin/categories", json={"name": "Salads"}, headers=admin
        )
        self.assertEqual(resp.status_code, 201)
        resp = self.client.post(
            "/api/admin/categories", json={"name": "salads"}, headers=admin
        )
        self.assertEqual(resp.status_code, 409)

        resp = self.client.patch(
            "/api/admin/products/2/availability", json={"isAvailable": False}, headers=admin
        )
        self.assertFalse(resp.json()["body"]["isAvailable"])

        resp = self.client.post(
            "/api/admin/discounts",
            json={
                "code": "summer",
                "type": "fixed",
                "value": 300,
                "startDate": "2024-01-01T00:00:00Z",
                "expireDate": "2099-01-01T00:00:00Z",
                "usageLimit": 5,
            },
            headers=admin,
        )
        self.assertEqual(resp.status_code, 201, resp.text)
        self.assertEqual(resp.json()["body"]["code"], "SUMMER")


if __name__ == "__main__":
    unittest.main()
