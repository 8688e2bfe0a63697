#!/usr/bin/env python3
"""Data models for the Safe / CoW Protocol swap workflow.

This module provides immutable data classes for the transactions sent
through the Safe and for the quotes, orders and trades exchanged with the
CoW Protocol order book. API payloads are validated when they are parsed so
that malformed responses fail at the boundary.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any

from web3 import Web3

from .exceptions import MalformedResponseError, OrderMismatchError

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
BPS_DENOMINATOR = 10_000


class OperationType(IntEnum):
    """Safe operation type of a transaction."""

    CALL = 0
    DELEGATE_CALL = 1


class OrderKind(str, Enum):
    SELL = "sell"
    BUY = "buy"


class SigningScheme(str, Enum):
    """Signing schemes understood by the order book."""

    EIP712 = "eip712"
    ETHSIGN = "ethsign"
    EIP1271 = "eip1271"
    PRESIGN = "presign"


class OrderStatus(str, Enum):
    PRESIGNATURE_PENDING = "presignaturePending"
    OPEN = "open"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


def _checksum(value: str, name: str) -> str:
    if not value or not Web3.is_address(value):
        raise ValueError(f"Invalid {name} address: {value!r}")
    return Web3.to_checksum_address(value)


def _hex_data(value: str | bytes) -> str:
    """Normalise calldata to a 0x-prefixed lowercase hex string."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if not isinstance(value, str) or not value.startswith("0x"):
        raise ValueError(f"Calldata must be 0x-prefixed hex, got {value!r}")
    try:
        return "0x" + bytes.fromhex(value[2:]).hex()
    except ValueError:
        raise ValueError(f"Calldata is not valid hex: {value!r}") from None


def _require(payload: dict[str, Any], key: str, context: str) -> Any:
    if not isinstance(payload, dict) or payload.get(key) is None:
        raise MalformedResponseError(f"{context} response missing '{key}'")
    return payload[key]


def _require_int(payload: dict[str, Any], key: str, context: str) -> int:
    value = _require(payload, key, context)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MalformedResponseError(
            f"{context} field '{key}' is not an integer: {value!r}"
        ) from None


def _optional_int(payload: dict[str, Any], key: str, context: str) -> int:
    value = payload.get(key)
    if value is None or value == "":
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        raise MalformedResponseError(
            f"{context} field '{key}' is not an integer: {value!r}"
        ) from None


def _parse_enum(enum_cls: type[Enum], value: Any, context: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        raise MalformedResponseError(
            f"{context} has unknown {enum_cls.__name__}: {value!r}"
        ) from None


@dataclass(frozen=True, slots=True)
class ChainTransactionRequest:
    """A single call to be executed by the Safe.

    Attributes:
        to: Target contract address (checksummed)
        value: Native currency sent with the call, in wei
        data: ABI-encoded calldata (0x-prefixed hex)
        operation: Plain call or delegate call
    """

    to: str
    value: int = 0
    data: str = "0x"
    operation: OperationType = OperationType.CALL

    def __post_init__(self) -> None:
        object.__setattr__(self, "to", _checksum(self.to, "target"))
        if not isinstance(self.value, int) or self.value < 0:
            raise ValueError(f"Transaction value must be a non-negative integer, got {self.value!r}")
        object.__setattr__(self, "data", _hex_data(self.data))
        object.__setattr__(self, "operation", OperationType(self.operation))

    @property
    def data_bytes(self) -> bytes:
        return bytes.fromhex(self.data[2:])


@dataclass(frozen=True, slots=True)
class BatchedTransaction:
    """An ordered batch of calls resolved to one Safe transaction.

    ``to``/``value``/``data``/``operation`` describe the single transaction
    the Safe executes. For a one-element batch this is the element itself;
    for larger batches it is a delegate call into a MultiSend contract whose
    payload encodes ``transactions`` in order.
    """

    transactions: tuple[ChainTransactionRequest, ...]
    to: str
    value: int
    data: str
    operation: OperationType
    calls_only: bool = True

    def __len__(self) -> int:
        return len(self.transactions)

    @property
    def is_multi_send(self) -> bool:
        return len(self.transactions) > 1


def build_app_data(app_code: str) -> str:
    """Build the canonical app-data JSON document for an order."""
    return json.dumps(
        {"appCode": app_code, "metadata": {}, "version": "1.1.0"},
        separators=(",", ":"),
        sort_keys=True,
    )


@dataclass(frozen=True, slots=True)
class QuoteRequest:
    """Parameters of a price quote request.

    ``amount`` is the sell amount before fees for SELL orders and the buy
    amount after fees for BUY orders.
    """

    sell_token: str
    buy_token: str
    amount: int
    from_address: str
    kind: OrderKind = OrderKind.SELL
    signing_scheme: SigningScheme = SigningScheme.PRESIGN
    receiver: str | None = None
    app_data: str = "{}"

    def __post_init__(self) -> None:
        object.__setattr__(self, "sell_token", _checksum(self.sell_token, "sell token"))
        object.__setattr__(self, "buy_token", _checksum(self.buy_token, "buy token"))
        object.__setattr__(self, "from_address", _checksum(self.from_address, "from"))
        if self.receiver is not None:
            object.__setattr__(self, "receiver", _checksum(self.receiver, "receiver"))
        if self.sell_token == self.buy_token:
            raise ValueError("Sell and buy token must differ")
        if not isinstance(self.amount, int) or self.amount <= 0:
            raise ValueError(f"Quote amount must be a positive integer, got {self.amount!r}")
        object.__setattr__(self, "kind", OrderKind(self.kind))
        object.__setattr__(self, "signing_scheme", SigningScheme(self.signing_scheme))

    @property
    def app_data_hash(self) -> str:
        return Web3.to_hex(Web3.keccak(text=self.app_data))

    def to_api(self) -> dict[str, Any]:
        """Serialise to the order book's quote request body."""
        body: dict[str, Any] = {
            "sellToken": self.sell_token,
            "buyToken": self.buy_token,
            "from": self.from_address,
            "receiver": self.receiver or self.from_address,
            "kind": self.kind.value,
            "signingScheme": self.signing_scheme.value,
            "appData": self.app_data,
            "appDataHash": self.app_data_hash,
            "partiallyFillable": False,
            "sellTokenBalance": "erc20",
            "buyTokenBalance": "erc20",
        }
        if self.kind is OrderKind.SELL:
            body["sellAmountBeforeFee"] = str(self.amount)
        else:
            body["buyAmountAfterFee"] = str(self.amount)
        return body


@dataclass(frozen=True, slots=True)
class Quote:
    """A point-in-time price estimate returned by the order book.

    A quote is advisory: it expires at ``expiration`` and the order built
    from it must still be accepted by the order book.
    """

    sell_token: str
    buy_token: str
    sell_amount: int
    buy_amount: int
    fee_amount: int
    valid_to: int
    kind: OrderKind
    expiration: datetime
    receiver: str | None = None
    partially_fillable: bool = False
    signing_scheme: SigningScheme | None = None
    app_data: str | None = None
    from_address: str | None = None
    quote_id: int | None = None
    verified: bool = False

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "Quote":
        """Parse a quote response.

        Raises:
            MalformedResponseError: If a required field is missing or malformed
        """
        context = "Quote"
        body = _require(payload, "quote", context)
        if not isinstance(body, dict):
            raise MalformedResponseError(f"Quote field 'quote' is not an object: {body!r}")
        raw_expiration = _require(payload, "expiration", context)
        try:
            expiration = datetime.fromisoformat(str(raw_expiration).replace("Z", "+00:00"))
        except ValueError:
            raise MalformedResponseError(
                f"Quote expiration is not an ISO timestamp: {raw_expiration!r}"
            ) from None
        if expiration.tzinfo is None:
            expiration = expiration.replace(tzinfo=timezone.utc)

        scheme = body.get("signingScheme")
        try:
            return cls(
                sell_token=Web3.to_checksum_address(_require(body, "sellToken", context)),
                buy_token=Web3.to_checksum_address(_require(body, "buyToken", context)),
                sell_amount=_require_int(body, "sellAmount", context),
                buy_amount=_require_int(body, "buyAmount", context),
                fee_amount=_require_int(body, "feeAmount", context),
                valid_to=_require_int(body, "validTo", context),
                kind=_parse_enum(OrderKind, _require(body, "kind", context), context),
                expiration=expiration,
                receiver=_checksum(body["receiver"], "receiver") if body.get("receiver") else None,
                partially_fillable=bool(body.get("partiallyFillable", False)),
                signing_scheme=_parse_enum(SigningScheme, scheme, context) if scheme else None,
                app_data=body.get("appData"),
                from_address=_checksum(payload["from"], "from") if payload.get("from") else None,
                quote_id=payload.get("id"),
                verified=bool(payload.get("verified", False)),
            )
        except ValueError as e:
            raise MalformedResponseError(f"Invalid quote payload: {e}") from e

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expiration or int(now.timestamp()) >= self.valid_to

    def __str__(self) -> str:
        return (
            f"Quote(sell={self.sell_amount} {self.sell_token[:8]}..., "
            f"buy={self.buy_amount} {self.buy_token[:8]}..., "
            f"fee={self.fee_amount}, expires={self.expiration.isoformat()})"
        )


@dataclass(frozen=True, slots=True)
class OrderCreation:
    """An order ready to be posted to the order book."""

    sell_token: str
    buy_token: str
    receiver: str
    sell_amount: int
    buy_amount: int
    valid_to: int
    fee_amount: int
    kind: OrderKind
    signing_scheme: SigningScheme
    signature: str
    from_address: str
    app_data: str
    app_data_hash: str
    partially_fillable: bool = False
    quote_id: int | None = None

    @classmethod
    def from_quote(
        cls,
        request: QuoteRequest,
        quote: Quote,
        slippage_bps: int = 50,
        signature: str | None = None,
    ) -> "OrderCreation":
        """Build an order from a quote and the request that produced it.

        Fees are folded into the limit amounts and slippage is applied to
        the side the order book is free to move.

        Args:
            request: The quote request the quote answers
            quote: Quote returned by the order book
            slippage_bps: Tolerated slippage in basis points
            signature: Contract signature, required for EIP-1271 orders

        Returns:
            OrderCreation that carries the same tokens and amount as the request

        Raises:
            OrderMismatchError: If the quote does not match the request
            ValueError: If the signing scheme cannot be used by a smart-contract
                wallet or the signature is missing
        """
        if not 0 <= slippage_bps < BPS_DENOMINATOR:
            raise ValueError(f"Slippage must be within [0, {BPS_DENOMINATOR}) bps, got {slippage_bps}")

        if Web3.to_checksum_address(quote.sell_token) != request.sell_token:
            raise OrderMismatchError(
                f"Quote sell token {quote.sell_token} does not match request {request.sell_token}"
            )
        if Web3.to_checksum_address(quote.buy_token) != request.buy_token:
            raise OrderMismatchError(
                f"Quote buy token {quote.buy_token} does not match request {request.buy_token}"
            )
        if quote.kind is not request.kind:
            raise OrderMismatchError(
                f"Quote kind {quote.kind.value} does not match request {request.kind.value}"
            )

        gross_sell = quote.sell_amount + quote.fee_amount
        match request.kind:
            case OrderKind.SELL:
                if gross_sell != request.amount:
                    raise OrderMismatchError(
                        f"Quote sells {gross_sell} (incl. fee) but {request.amount} was requested"
                    )
                sell_amount = request.amount
                buy_amount = quote.buy_amount * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR
            case OrderKind.BUY:
                if quote.buy_amount != request.amount:
                    raise OrderMismatchError(
                        f"Quote buys {quote.buy_amount} but {request.amount} was requested"
                    )
                buy_amount = request.amount
                sell_amount = gross_sell * (BPS_DENOMINATOR + slippage_bps) // BPS_DENOMINATOR

        match request.signing_scheme:
            case SigningScheme.PRESIGN:
                # The order is authorised later by setPreSignature from the owner
                order_signature = request.from_address
            case SigningScheme.EIP1271:
                if not signature or signature == "0x":
                    raise ValueError("EIP-1271 orders require a contract signature")
                order_signature = _hex_data(signature)
            case scheme:
                raise ValueError(
                    f"Signing scheme {scheme.value} needs an EOA signature and cannot be "
                    "used for a smart-contract wallet"
                )

        return cls(
            sell_token=request.sell_token,
            buy_token=request.buy_token,
            receiver=request.receiver or request.from_address,
            sell_amount=sell_amount,
            buy_amount=buy_amount,
            valid_to=quote.valid_to,
            fee_amount=0,
            kind=request.kind,
            signing_scheme=request.signing_scheme,
            signature=order_signature,
            from_address=request.from_address,
            app_data=request.app_data,
            app_data_hash=request.app_data_hash,
            partially_fillable=False,
            quote_id=quote.quote_id,
        )

    def to_api(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "sellToken": self.sell_token,
            "buyToken": self.buy_token,
            "receiver": self.receiver,
            "sellAmount": str(self.sell_amount),
            "buyAmount": str(self.buy_amount),
            "validTo": self.valid_to,
            "feeAmount": str(self.fee_amount),
            "kind": self.kind.value,
            "partiallyFillable": self.partially_fillable,
            "sellTokenBalance": "erc20",
            "buyTokenBalance": "erc20",
            "signingScheme": self.signing_scheme.value,
            "signature": self.signature,
            "from": self.from_address,
            "appData": self.app_data,
            "appDataHash": self.app_data_hash,
        }
        if self.quote_id is not None:
            body["quoteId"] = self.quote_id
        return body


@dataclass(frozen=True, slots=True)
class Order:
    """An order as reported by the order book."""

    uid: str
    owner: str
    status: OrderStatus
    sell_token: str
    buy_token: str
    sell_amount: int
    buy_amount: int
    valid_to: int
    kind: OrderKind
    signing_scheme: SigningScheme
    executed_sell_amount: int = 0
    executed_buy_amount: int = 0

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "Order":
        context = "Order"
        return cls(
            uid=_require(payload, "uid", context),
            owner=_require(payload, "owner", context),
            status=_parse_enum(OrderStatus, _require(payload, "status", context), context),
            sell_token=_require(payload, "sellToken", context),
            buy_token=_require(payload, "buyToken", context),
            sell_amount=_require_int(payload, "sellAmount", context),
            buy_amount=_require_int(payload, "buyAmount", context),
            valid_to=_require_int(payload, "validTo", context),
            kind=_parse_enum(OrderKind, _require(payload, "kind", context), context),
            signing_scheme=_parse_enum(
                SigningScheme, _require(payload, "signingScheme", context), context
            ),
            executed_sell_amount=_optional_int(payload, "executedSellAmount", context),
            executed_buy_amount=_optional_int(payload, "executedBuyAmount", context),
        )

    @property
    def is_open(self) -> bool:
        return self.status in (OrderStatus.OPEN, OrderStatus.PRESIGNATURE_PENDING)


@dataclass(frozen=True, slots=True)
class Trade:
    """A settlement of (part of) an order."""

    order_uid: str
    owner: str
    block_number: int
    log_index: int
    sell_amount: int
    buy_amount: int
    tx_hash: str | None = None

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "Trade":
        context = "Trade"
        return cls(
            order_uid=_require(payload, "orderUid", context),
            owner=_require(payload, "owner", context),
            block_number=_require_int(payload, "blockNumber", context),
            log_index=_require_int(payload, "logIndex", context),
            sell_amount=_require_int(payload, "sellAmount", context),
            buy_amount=_require_int(payload, "buyAmount", context),
            tx_hash=payload.get("txHash"),
        )


@dataclass(frozen=True, slots=True)
class TransactionReceipt:
    """The parts of a mined transaction's receipt the workflow relies on."""

    tx_hash: str
    block_number: int
    status: int
    gas_used: int = 0

    @classmethod
    def from_web3(cls, receipt: Any) -> "TransactionReceipt":
        return cls(
            tx_hash=Web3.to_hex(receipt["transactionHash"]),
            block_number=int(receipt["blockNumber"]),
            status=int(receipt.get("status", 0)),
            gas_used=int(receipt.get("gasUsed", 0)),
        )

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@dataclass(slots=True)
class WorkflowResult:
    """Outcome of one workflow run.

    Filled in step by step; ``error`` holds the exception that stopped the
    run, if any.
    """

    mode: str
    success: bool = False
    error: Exception | None = None
    batch_tx_hash: str | None = None
    presign_tx_hash: str | None = None
    quote: Quote | None = None
    order_uid: str | None = None
    order_status: OrderStatus | None = None
    trades: list[Trade] = field(default_factory=list)
    balances: dict[str, dict[str, int]] = field(default_factory=dict)

    @property
    def error_kind(self) -> str | None:
        return type(self.error).__name__ if self.error else None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "mode": self.mode,
            "success": self.success,
            "error": str(self.error) if self.error else None,
            "error_kind": self.error_kind,
            "batch_tx_hash": self.batch_tx_hash,
            "presign_tx_hash": self.presign_tx_hash,
            "quote": str(self.quote) if self.quote else None,
            "order_uid": self.order_uid,
            "order_status": self.order_status.value if self.order_status else None,
            "trades": len(self.trades),
            "balances": self.balances,
        }
