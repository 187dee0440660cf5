"""FastAPI surface for the order book, price, and order actions."""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Literal, Optional

from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from blockmarket.execution.errors import (
    InvalidTransition,
    MarketError,
    OrderAlreadyClaimed,
    OrderNotFound,
    TransportError,
    Unauthenticated,
)
from blockmarket.execution.order_store import Order
from blockmarket.pricing.stats import Timeframe

if TYPE_CHECKING:
    from blockmarket.app import MarketSession

_ERROR_STATUS = {
    Unauthenticated: 401,
    OrderNotFound: 404,
    OrderAlreadyClaimed: 409,
    InvalidTransition: 409,
    TransportError: 502,
}


class BidRequest(BaseModel):
    price: float = Field(gt=0)
    restaurant: str = ""
    items: List[str] = Field(default_factory=list)
    delivery_time: Optional[datetime] = None


class AskRequest(BaseModel):
    price: Optional[float] = Field(default=None, gt=0)
    expires_in_minutes: Optional[int] = None
    restaurant: str = ""


class CompleteRequest(BaseModel):
    proof: Optional[str] = None


def serialize_order(order: Order) -> Dict[str, Any]:
    return order.to_record()


def create_app(market: "MarketSession") -> FastAPI:
    app = FastAPI(title="The Block Market", version="0.1.0")

    @app.exception_handler(MarketError)
    async def market_error(request: Request, exc: MarketError) -> JSONResponse:
        status = next((code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 400)
        detail = str(exc)
        if isinstance(exc, OrderAlreadyClaimed):
            detail = "order no longer available"
        return JSONResponse({"error": type(exc).__name__, "detail": detail}, status_code=status)

    @app.exception_handler(ValueError)
    async def value_error(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse({"error": "ValueError", "detail": str(exc)}, status_code=422)

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok", "orders": len(market.store), "revision": market.view.revision}

    @app.get("/price")
    async def price() -> dict:
        estimate = market.view.price
        return {"price": estimate.price, "source": estimate.source}

    @app.get("/book")
    async def book() -> dict:
        return {"mid": market.view.price.price, **market.view.book.to_dict()}

    @app.get("/stats")
    async def stats() -> dict:
        return asdict(market.view.stats)

    @app.get("/metrics")
    async def metrics() -> Dict[str, Any]:
        return market.metrics.export() if market.metrics else {}

    @app.get("/history")
    async def history(timeframe: Timeframe = "1D") -> dict:
        return asdict(market.price_history(timeframe))

    @app.get("/transactions")
    async def transactions(limit: int = 10) -> List[dict]:
        return [asdict(tx) for tx in market.transactions(limit)]

    @app.get("/restaurants")
    async def restaurants() -> List[dict]:
        return [asdict(restaurant) for restaurant in await market.restaurants()]

    @app.get("/orders")
    async def orders(
        tab: Literal["active", "completed", "cancelled"] = "active",
        x_user_id: Optional[str] = Header(default=None),
    ) -> List[dict]:
        if not x_user_id:
            raise Unauthenticated("Sign in to view your orders")
        return [serialize_order(order) for order in market.orders_for(x_user_id, tab)]

    @app.post("/orders/bids", status_code=201)
    async def post_bid(body: BidRequest, x_user_id: Optional[str] = Header(default=None)) -> dict:
        order = await market.post_bid(
            body.price,
            restaurant=body.restaurant,
            items=body.items,
            requester=x_user_id,
            delivery_time=body.delivery_time,
        )
        return serialize_order(order)

    @app.post("/orders/asks", status_code=201)
    async def post_ask(body: AskRequest, x_user_id: Optional[str] = Header(default=None)) -> dict:
        order = await market.post_ask(
            body.price,
            requester=x_user_id,
            expires_in_minutes=body.expires_in_minutes,
            restaurant=body.restaurant,
        )
        return serialize_order(order)

    @app.post("/orders/{order_id}/accept")
    async def accept(order_id: str, x_user_id: Optional[str] = Header(default=None)) -> dict:
        return serialize_order(await market.accept(order_id, x_user_id))

    @app.post("/orders/{order_id}/cancel")
    async def cancel(order_id: str, x_user_id: Optional[str] = Header(default=None)) -> dict:
        return serialize_order(await market.cancel(order_id, x_user_id))

    @app.post("/orders/{order_id}/complete")
    async def complete(
        order_id: str, body: Optional[CompleteRequest] = None, x_user_id: Optional[str] = Header(default=None)
    ) -> dict:
        proof = body.proof if body else None
        return serialize_order(await market.complete(order_id, x_user_id, proof))

    return app


__all__ = ["create_app", "serialize_order"]
