"""Exception hierarchy for safe-cow-swap.

Errors are grouped by how a caller recovers from them: configuration and
precondition errors are fatal, transport errors are transient, protocol
errors need a fresh quote or a different order, and execution errors mean
an on-chain transaction did not do what was asked.
"""

from typing import Any


class SwapError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(SwapError, ValueError):
    """A required setting is missing or malformed."""


class PreconditionError(SwapError):
    """The wallet is not in a state the workflow can act on."""


class SafeNotDeployedError(PreconditionError):
    """No contract code exists at the configured Safe address."""

    def __init__(self, safe_address: str) -> None:
        super().__init__(f"Safe not deployed at {safe_address}")
        self.safe_address = safe_address


class BatchError(SwapError, ValueError):
    """A batch cannot be built with the requested execution path."""


class TransportError(SwapError):
    """A remote service could not be reached or failed transiently."""


class OrderBookTransportError(TransportError):
    """The order book API was unreachable or answered with a server error."""


class ProtocolError(SwapError):
    """A business-level rejection that a retry on the same input will not fix."""


class OrderBookError(ProtocolError):
    """The order book rejected a request.

    Attributes:
        status_code: HTTP status returned by the API (None when raised locally)
        error_type: The API's ``errorType`` tag, if any
        description: The API's human-readable description, if any
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_type: str | None = None,
        description: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type
        self.description = description


class QuoteExpiredError(OrderBookError):
    """The quote is no longer valid; fetch a new one."""


class OrderRejectedError(OrderBookError):
    """The order book refused the order."""


class OrderNotFoundError(OrderBookError):
    """No order exists for the requested uid."""


class MalformedResponseError(OrderBookError):
    """The API answered with a payload missing required fields."""


class OrderMismatchError(ProtocolError):
    """An order does not match the quote request it was built from."""


class ExecutionError(SwapError):
    """An on-chain transaction could not be submitted or did not succeed."""


class TransactionSubmissionError(ExecutionError):
    """The node refused the transaction before it was mined."""


class TransactionRevertedError(ExecutionError):
    """The transaction was mined with a failure status."""

    def __init__(self, tx_hash: str, receipt: Any = None) -> None:
        super().__init__(f"Transaction {tx_hash} reverted")
        self.tx_hash = tx_hash
        self.receipt = receipt


class ConfirmationTimeoutError(ExecutionError):
    """The transaction was not mined within the configured timeout."""

    def __init__(self, tx_hash: str, timeout: float) -> None:
        super().__init__(f"Transaction {tx_hash} not mined after {timeout} seconds")
        self.tx_hash = tx_hash
        self.timeout = timeout
