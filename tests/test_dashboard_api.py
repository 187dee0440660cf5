import unittest

from fastapi.testclient import TestClient

from blockmarket.app import MarketSession
from blockmarket.dashboard.app import create_app
from blockmarket.data.order_table import InMemoryOrderTable
from blockmarket.infra.metrics import MetricsSink


class DashboardApiTest(unittest.TestCase):
    def setUp(self) -> None:
        self.market = MarketSession(InMemoryOrderTable())
        self.client = TestClient(create_app(self.market))

    def post_bid(self, user: str = "alice", price: float = 8.45) -> dict:
        response = self.client.post(
            "/orders/bids",
            json={"price": price, "restaurant": "The Underground", "items": ["Burger"]},
            headers={"X-User-Id": user},
        )
        self.assertEqual(201, response.status_code)
        return response.json()

    def test_bid_accept_complete_flow(self) -> None:
        bid = self.post_bid()
        self.assertEqual("PENDING", bid["status"])
        self.assertEqual(["Burger"], bid["items"])

        accepted = self.client.post(f"/orders/{bid['id']}/accept", headers={"X-User-Id": "sam"})
        self.assertEqual(200, accepted.status_code)
        self.assertEqual("sam", accepted.json()["seller_id"])

        completed = self.client.post(
            f"/orders/{bid['id']}/complete", json={"proof": "receipt-1"}, headers={"X-User-Id": "sam"}
        )
        self.assertEqual(200, completed.status_code)
        self.assertEqual("COMPLETED", completed.json()["status"])

        history = self.client.get("/orders", params={"tab": "completed"}, headers={"X-User-Id": "alice"})
        self.assertEqual([bid["id"]], [order["id"] for order in history.json()])

    def test_second_acceptance_is_conflict(self) -> None:
        bid = self.post_bid()
        self.client.post(f"/orders/{bid['id']}/accept", headers={"X-User-Id": "sam"})

        response = self.client.post(f"/orders/{bid['id']}/accept", headers={"X-User-Id": "carol"})

        self.assertEqual(409, response.status_code)
        self.assertEqual("order no longer available", response.json()["detail"])

    def test_invalid_transition_is_conflict(self) -> None:
        bid = self.post_bid()

        response = self.client.post(f"/orders/{bid['id']}/cancel", headers={"X-User-Id": "mallory"})
        self.assertEqual(409, response.status_code)
        self.assertEqual("InvalidTransition", response.json()["error"])

    def test_signed_out_requests_are_unauthorized(self) -> None:
        self.assertEqual(401, self.client.post("/orders/bids", json={"price": 8.5}).status_code)
        self.assertEqual(401, self.client.get("/orders").status_code)

    def test_unknown_order_is_not_found(self) -> None:
        response = self.client.post("/orders/bid-missing/accept", headers={"X-User-Id": "sam"})
        self.assertEqual(404, response.status_code)

    def test_invalid_input_is_unprocessable(self) -> None:
        bad_price = self.client.post("/orders/bids", json={"price": 0}, headers={"X-User-Id": "alice"})
        bad_expiry = self.client.post(
            "/orders/asks", json={"price": 8.5, "expires_in_minutes": 20}, headers={"X-User-Id": "sam"}
        )

        self.assertEqual(422, bad_price.status_code)
        self.assertEqual(422, bad_expiry.status_code)

    def test_price_and_book_reflect_orders(self) -> None:
        self.post_bid(price=8.40)
        self.post_bid(price=8.45)
        ask = self.client.post("/orders/asks", json={"price": 8.55}, headers={"X-User-Id": "sam"})
        self.assertEqual(201, ask.status_code)

        price = self.client.get("/price").json()
        book = self.client.get("/book").json()

        self.assertEqual("midpoint", price["source"])
        self.assertAlmostEqual(8.50, price["price"], places=6)
        self.assertEqual([{"price": 8.45, "quantity": 1}, {"price": 8.40, "quantity": 1}], book["bids"])
        self.assertEqual([{"price": 8.55, "quantity": 1}], book["asks"])
        self.assertEqual(3, self.client.get("/stats").json()["active_orders"])
        self.assertEqual("ok", self.client.get("/health").json()["status"])

    def test_price_history_for_timeframe(self) -> None:
        bid = self.post_bid(price=8.45)
        self.client.post(f"/orders/{bid['id']}/accept", headers={"X-User-Id": "sam"})

        history = self.client.get("/history", params={"timeframe": "1W"})

        self.assertEqual(200, history.status_code)
        body = history.json()
        self.assertEqual("1W", body["timeframe"])
        self.assertEqual([8.45], [point["price"] for point in body["points"]])
        self.assertEqual(0.0, body["change"])
        self.assertEqual(200, self.client.get("/history").status_code)
        self.assertEqual(422, self.client.get("/history", params={"timeframe": "5Y"}).status_code)

    def test_metrics_endpoint(self) -> None:
        market = MarketSession(InMemoryOrderTable(), metrics=MetricsSink())
        client = TestClient(create_app(market))
        client.post("/orders/bids", json={"price": 8.5}, headers={"X-User-Id": "alice"})

        metrics = client.get("/metrics").json()
        self.assertEqual(1, metrics["orders_posted"])
        self.assertEqual({}, self.client.get("/metrics").json())


if __name__ == "__main__":
    unittest.main()
