"""Data access layer for the hosted order table, change feed, and directory."""

from .clients import Compare, OrderTable, RemoteEndpoint, SessionProvider, StaticSession
from .change_feed import ChangeEvent, ChangeFeedClient
from .directory import Restaurant, RestaurantDirectoryClient
from .order_table import InMemoryOrderTable, RestOrderTable
from .polling import PeriodicRefresher

__all__ = [
    "Compare",
    "OrderTable",
    "RemoteEndpoint",
    "SessionProvider",
    "StaticSession",
    "ChangeEvent",
    "ChangeFeedClient",
    "Restaurant",
    "RestaurantDirectoryClient",
    "InMemoryOrderTable",
    "RestOrderTable",
    "PeriodicRefresher",
]
