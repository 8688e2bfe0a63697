#!/usr/bin/env python3
"""Client for the CoW Protocol order book API.

Quotes, order submission and order/trade lookups. Transport failures and
server errors surface as ``OrderBookTransportError``; rejections by the
order book surface as ``OrderBookError`` subclasses so callers can tell a
stale quote from an unreachable service.
"""

import asyncio
import json
import logging
from typing import Any

import httpx

from .exceptions import (
    MalformedResponseError,
    OrderBookError,
    OrderBookTransportError,
    OrderNotFoundError,
    OrderRejectedError,
    QuoteExpiredError,
)
from .models import Order, OrderCreation, Quote, QuoteRequest, Trade

logger = logging.getLogger(__name__)


class OrderBookClient:
    """Async client of one CoW Protocol order book (one chain)."""

    # errorType values meaning the quote behind an order is stale
    QUOTE_EXPIRED_ERRORS: frozenset[str] = frozenset({"QuoteNotFound", "InvalidQuote", "InsufficientValidTo"})

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        retry_count: int = 3,
        backoff_factor: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the order book client.

        Args:
            base_url: API root for the chain, e.g. https://api.cow.fi/mainnet
            timeout: Timeout of each HTTP request in seconds
            retry_count: Retries for idempotent requests
            backoff_factor: Base delay of the exponential backoff in seconds
            transport: Optional transport override
        """
        self.base_url: str = base_url.rstrip("/")
        self.timeout: float = timeout
        self.retry_count: int = retry_count
        self.backoff_factor: float = backoff_factor
        self.transport: httpx.AsyncBaseTransport | None = transport

    async def _request(
        self,
        method: str,
        path: str,
        payload: Any = None,
        params: dict[str, str] | None = None,
        idempotent: bool = False,
    ) -> Any:
        """Send a request to the order book and decode the JSON answer.

        Idempotent requests are retried with exponential backoff on transport
        errors and 5xx answers; others are sent exactly once.

        Raises:
            OrderBookTransportError: If the API is unreachable or keeps failing
            OrderBookError: If the API rejects the request
        """
        attempts: int = self.retry_count + 1 if idempotent else 1
        error: OrderBookTransportError | None = None

        for attempt in range(1, attempts + 1):
            try:
                async with httpx.AsyncClient(
                    base_url=self.base_url, transport=self.transport, timeout=self.timeout
                ) as client:
                    if payload is not None:
                        logger.debug(f"{method} {self.base_url}{path}: {json.dumps(payload)}")
                    response: httpx.Response = await client.request(method, path, json=payload, params=params)
            except httpx.TransportError as e:
                error = OrderBookTransportError(f"{method} {path} failed: {e!r}")
            else:
                if response.status_code < 500:
                    return self._decode(response, path)
                error = OrderBookTransportError(
                    f"{method} {path} returned HTTP {response.status_code}"
                )

            if attempt < attempts:
                wait_time = self.backoff_factor * (2 ** (attempt - 1))
                logger.warning(f"Retrying after {wait_time}s due to: {error}")
                await asyncio.sleep(wait_time)

        logger.error(f"Order book request failed: {error}")
        raise error

    def _decode(self, response: httpx.Response, path: str) -> Any:
        if response.is_success:
            try:
                return response.json()
            except ValueError:
                raise MalformedResponseError(
                    f"Invalid JSON from {path}: {response.text[:200]!r}",
                    status_code=response.status_code,
                ) from None

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        error_type: str | None = body.get("errorType")
        description: str | None = body.get("description")
        message = f"Order book rejected {path} (HTTP {response.status_code}): {error_type or 'unknown error'}"
        if description:
            message += f" - {description}"

        error_cls: type[OrderBookError]
        if error_type in self.QUOTE_EXPIRED_ERRORS:
            error_cls = QuoteExpiredError
        elif response.status_code == 404:
            error_cls = OrderNotFoundError
        else:
            error_cls = OrderRejectedError

        logger.error(message)
        raise error_cls(
            message,
            status_code=response.status_code,
            error_type=error_type,
            description=description,
        )

    async def get_quote(self, request: QuoteRequest) -> Quote:
        """Request a price quote.

        The quote is advisory and expires; it does not reserve liquidity.

        Args:
            request: Tokens, amount, side and signing scheme

        Returns:
            Parsed quote

        Raises:
            OrderBookError: If no quote can be given for the request
            OrderBookTransportError: If the API is unreachable
        """
        logger.info(
            f"Requesting {request.kind.value} quote: {request.amount} of "
            f"{request.sell_token} -> {request.buy_token}"
        )
        # Quoting has no side effects, so it is safe to retry
        payload = await self._request("POST", "/api/v1/quote", payload=request.to_api(), idempotent=True)
        quote = Quote.from_api(payload)
        logger.info(f"Received {quote}")
        return quote

    async def post_order(self, order: OrderCreation) -> str:
        """Submit an order.

        Returns:
            The order uid assigned by the order book

        Raises:
            QuoteExpiredError: If the quote the order was built from is stale
            OrderRejectedError: If the order book refuses the order
        """
        logger.info(
            f"Posting {order.signing_scheme.value} order: sell {order.sell_amount} "
            f"for at least {order.buy_amount}"
        )
        uid = await self._request("POST", "/api/v1/orders", payload=order.to_api())
        if not isinstance(uid, str) or not uid.startswith("0x"):
            raise MalformedResponseError(f"Order submission returned no order uid: {uid!r}")
        logger.info(f"✓ Order created: {uid}")
        return uid

    async def get_order(self, order_uid: str) -> Order:
        payload = await self._request("GET", f"/api/v1/orders/{order_uid}", idempotent=True)
        return Order.from_api(payload)

    async def get_trades(self, order_uid: str) -> list[Trade]:
        payload = await self._request(
            "GET", "/api/v1/trades", params={"orderUid": order_uid}, idempotent=True
        )
        if not isinstance(payload, list):
            raise MalformedResponseError(f"Trades response is not a list: {payload!r}")
        return [Trade.from_api(item) for item in payload]
