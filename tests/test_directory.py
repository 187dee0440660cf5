import unittest
from unittest import mock

import requests

from blockmarket.data.directory import Restaurant, RestaurantDirectoryClient
from blockmarket.execution.errors import TransportError

LOCATIONS = {
    "locations": [
        {
            "conceptId": "112",
            "name": "The Underground",
            "shortDescription": "Burgers and late-night fare",
            "location": "Morewood Gardens",
            "acceptsOnlineOrders": True,
        },
        {"name": "Schatz Dining Room", "location": "University Center"},
        {"name": "", "location": "Nowhere"},
    ]
}


def make_session(payload) -> mock.Mock:
    session = mock.Mock()
    response = mock.Mock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    session.get.return_value = response
    return session


class RestaurantDirectoryClientTest(unittest.IsolatedAsyncioTestCase):
    async def test_normalizes_locations(self) -> None:
        client = RestaurantDirectoryClient(session=make_session(LOCATIONS))

        restaurants = await client.restaurants()

        self.assertEqual(
            [
                Restaurant(
                    name="The Underground",
                    short_description="Burgers and late-night fare",
                    location="Morewood Gardens",
                    accepts_online_orders=True,
                    concept_id=112,
                ),
                Restaurant(name="Schatz Dining Room", location="University Center"),
            ],
            restaurants,
        )
        self.assertTrue(await client.is_known("The Underground"))
        self.assertFalse(await client.is_known("Nowhere"))

    async def test_results_are_cached(self) -> None:
        session = make_session(LOCATIONS["locations"])
        client = RestaurantDirectoryClient(session=session, cache_seconds=60)

        await client.restaurants()
        await client.restaurants()
        self.assertEqual(1, session.get.call_count)

    async def test_request_failure_raises_transport_error(self) -> None:
        session = mock.Mock()
        session.get.side_effect = requests.Timeout("slow")
        client = RestaurantDirectoryClient(session=session)

        with self.assertLogs("blockmarket.data.directory", level="WARNING"):
            with self.assertRaises(TransportError):
                await client.restaurants()


if __name__ == "__main__":
    unittest.main()
