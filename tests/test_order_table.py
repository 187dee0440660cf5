import unittest
from datetime import datetime, timezone
from unittest import mock

import requests

from blockmarket.data.clients import Compare, RemoteEndpoint
from blockmarket.data.order_table import InMemoryOrderTable, RestOrderTable
from blockmarket.execution.errors import TransportError

ENDPOINT = RemoteEndpoint(url="https://demo.supabase.co/", api_key="anon-key")


def make_response(payload) -> mock.Mock:
    response = mock.Mock()
    response.content = b"payload"
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


class RemoteEndpointTest(unittest.TestCase):
    def test_urls(self) -> None:
        self.assertEqual("https://demo.supabase.co/rest/v1/orders", ENDPOINT.rest_url)
        self.assertEqual(
            "wss://demo.supabase.co/realtime/v1/websocket?apikey=anon-key&vsn=1.0.0",
            ENDPOINT.realtime_url,
        )


class RestOrderTableTest(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.session = mock.Mock()
        self.table = RestOrderTable(ENDPOINT, session=self.session, timeout_seconds=3.0)

    async def test_conditional_update_sends_predicate_as_filters(self) -> None:
        self.session.request.return_value = make_response([{"id": "b1", "status": "ACCEPTED"}])

        row = await self.table.update_where(
            "b1", {"status": "PENDING", "seller_id": None}, {"seller_id": "sam", "status": "ACCEPTED"}
        )

        self.assertEqual({"id": "b1", "status": "ACCEPTED"}, row)
        args, kwargs = self.session.request.call_args
        self.assertEqual(("PATCH", ENDPOINT.rest_url), args)
        self.assertEqual({"id": "eq.b1", "status": "eq.PENDING", "seller_id": "is.null"}, kwargs["params"])
        self.assertEqual({"seller_id": "sam", "status": "ACCEPTED"}, kwargs["json"])
        self.assertEqual("return=representation", kwargs["headers"]["Prefer"])
        self.assertEqual("Bearer anon-key", kwargs["headers"]["Authorization"])
        self.assertEqual(3.0, kwargs["timeout"])

    async def test_ordering_predicate_is_rendered_as_operator(self) -> None:
        self.session.request.return_value = make_response([])
        now = datetime(2025, 2, 8, 12, 0, tzinfo=timezone.utc)

        await self.table.update_where("b1", {"expiration_time": Compare("gt", now)}, {"status": "ACCEPTED"})

        params = self.session.request.call_args.kwargs["params"]
        self.assertEqual("gt.2025-02-08T12:00:00+00:00", params["expiration_time"])

    async def test_failed_predicate_returns_none(self) -> None:
        self.session.request.return_value = make_response([])

        row = await self.table.update_where("b1", {"status": "PENDING"}, {"status": "CANCELLED"})
        self.assertIsNone(row)

    async def test_fetch_and_select(self) -> None:
        self.session.request.return_value = make_response([{"id": "b1"}])

        self.assertEqual({"id": "b1"}, await self.table.fetch("b1"))
        self.assertEqual([{"id": "b1"}], await self.table.select({"is_disputed": False}))
        self.assertEqual({"is_disputed": "eq.false"}, self.session.request.call_args.kwargs["params"])

    async def test_insert_returns_stored_row(self) -> None:
        self.session.request.return_value = make_response([{"id": "b1", "price": 8.5}])

        row = await self.table.insert({"id": "b1", "price": 8.5})
        self.assertEqual({"id": "b1", "price": 8.5}, row)
        self.assertEqual("POST", self.session.request.call_args.args[0])

    async def test_http_errors_become_transport_errors(self) -> None:
        self.session.request.side_effect = requests.ConnectionError("refused")

        with self.assertLogs("blockmarket.data.order_table", level="WARNING"):
            with self.assertRaises(TransportError):
                await self.table.fetch("b1")


class InMemoryOrderTableTest(unittest.IsolatedAsyncioTestCase):
    async def test_conditional_update_is_compare_and_swap(self) -> None:
        table = InMemoryOrderTable(rows=[{"id": "b1", "status": "PENDING", "seller_id": None}])

        first = await table.update_where("b1", {"status": "PENDING", "seller_id": None}, {"seller_id": "sam"})
        second = await table.update_where("b1", {"status": "PENDING", "seller_id": None}, {"seller_id": "carol"})

        self.assertEqual("sam", first["seller_id"])
        self.assertIsNone(second)
        self.assertEqual("sam", (await table.fetch("b1"))["seller_id"])

    async def test_ordering_predicate_compares_timestamps(self) -> None:
        table = InMemoryOrderTable(rows=[{"id": "b1", "status": "PENDING", "expiration_time": "2025-02-08T12:30:00Z"}])
        before = datetime(2025, 2, 8, 12, 0, tzinfo=timezone.utc)
        after = datetime(2025, 2, 8, 12, 45, tzinfo=timezone.utc)

        expired = await table.update_where("b1", {"expiration_time": Compare("gt", after)}, {"status": "ACCEPTED"})
        self.assertIsNone(expired)
        row = await table.update_where("b1", {"expiration_time": Compare("gt", before)}, {"status": "ACCEPTED"})
        self.assertEqual("ACCEPTED", row["status"])

    async def test_ordering_predicate_never_matches_null(self) -> None:
        table = InMemoryOrderTable(rows=[{"id": "b1", "price": None}])

        self.assertEqual([], await table.select({"price": Compare("gte", 0)}))

    def test_unknown_operator_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            Compare("like", "x")

    async def test_rows_are_copied(self) -> None:
        table = InMemoryOrderTable()
        record = {"id": "b1", "items": ["Burger"]}
        await table.insert(record)
        record["items"].append("Fries")

        self.assertEqual(["Burger"], (await table.fetch("b1"))["items"])

    async def test_duplicate_insert_fails(self) -> None:
        table = InMemoryOrderTable(rows=[{"id": "b1"}])

        with self.assertRaises(TransportError):
            await table.insert({"id": "b1"})


if __name__ == "__main__":
    unittest.main()
