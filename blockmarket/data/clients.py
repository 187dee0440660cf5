"""Client interfaces for the hosted order table and session provider."""

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol

OrderRecord = Dict[str, Any]


@dataclass(frozen=True)
class Compare:
    """Ordering predicate usable as a filter or ``expected`` value.

    ``op`` is one of the PostgREST operators ``gt``, ``gte``, ``lt`` or ``lte``.
    Datetime operands are compared as instants.
    """

    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in ("gt", "gte", "lt", "lte"):
            raise ValueError(f"Unsupported comparison operator {self.op!r}")


@dataclass
class RemoteEndpoint:
    """Connection details for the hosted backend.

    Attributes:
        url: Project base URL, e.g. ``https://<ref>.supabase.co``.
        api_key: Anonymous or service key sent with every request.
        table: Name of the orders table.
    """

    url: str
    api_key: str
    table: str = "orders"

    @property
    def rest_url(self) -> str:
        return f"{self.url.rstrip('/')}/rest/v1/{self.table}"

    @property
    def realtime_url(self) -> str:
        base = self.url.rstrip("/").replace("https://", "wss://", 1).replace("http://", "ws://", 1)
        return f"{base}/realtime/v1/websocket?apikey={self.api_key}&vsn=1.0.0"


class OrderTable(Protocol):
    """Remote relational table holding order rows.

    ``update_where`` is the store's atomic conditional update: it applies
    ``changes`` only if every column in ``expected`` currently holds the given
    value (``None`` meaning SQL NULL, a :class:`Compare` an ordering test) and
    returns the updated row, or ``None`` when the predicate did not match.
    """

    async def insert(self, record: OrderRecord) -> OrderRecord:
        """Insert a new row and return it as stored."""

    async def fetch(self, order_id: str) -> Optional[OrderRecord]:
        """Return a single row by id."""

    async def select(self, filters: Optional[Mapping[str, Any]] = None) -> List[OrderRecord]:
        """Return rows whose columns equal the given filter values."""

    async def update_where(
        self, order_id: str, expected: Mapping[str, Any], changes: Mapping[str, Any]
    ) -> Optional[OrderRecord]:
        """Conditionally update one row."""


class SessionProvider(Protocol):
    """Supplies the signed-in user's identifier, or ``None`` when signed out."""

    def current_user_id(self) -> Optional[str]:
        ...


@dataclass
class StaticSession:
    """Session provider pinned to a fixed identity."""

    user_id: Optional[str] = None

    def current_user_id(self) -> Optional[str]:
        return self.user_id
