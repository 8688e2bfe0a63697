"""
Safe swap workflow.

This module orchestrates the swap: it checks the Safe, funds and authorizes
the CoW Protocol vault relayer in one atomic Safe transaction, then quotes,
posts and presigns an order and reports its status. Every step waits for the
previous one; a transaction is only relied upon once its receipt reports
success.
"""

import logging
from collections.abc import Mapping
from enum import Enum

import httpx

from .config import WorkflowConfig
from .exceptions import (
    ConfigurationError,
    QuoteExpiredError,
    SafeNotDeployedError,
)
from .models import (
    OrderCreation,
    OrderKind,
    Quote,
    QuoteRequest,
    SigningScheme,
    WorkflowResult,
    build_app_data,
)
from .order_book import OrderBookClient
from .safe_wallet import SafeWallet
from .settlement import presign_request
from .token_operations import TokenOperations
from .utils.chain_connector import ChainConnector
from .utils.confirmation import TransactionWaiter

logger = logging.getLogger(__name__)


class WorkflowMode(str, Enum):
    """Which part of the workflow to run."""

    DEPOSIT = "deposit"  # wrap + approve only
    QUOTE = "quote"  # quote only, no transactions
    SWAP = "swap"  # wrap + approve, quote, post and presign order


class SwapWorkflow:
    """
    Runs the swap through a Safe, one step at a time.

    Components are injected so the workflow can be driven against fakes;
    use :meth:`from_config` to build the real ones.
    """

    def __init__(
        self,
        config: WorkflowConfig,
        connector: ChainConnector,
        wallet: SafeWallet,
        tokens: TokenOperations,
        order_book: OrderBookClient,
        waiter: TransactionWaiter,
    ) -> None:
        self.config = config
        self.connector = connector
        self.wallet = wallet
        self.tokens = tokens
        self.order_book = order_book
        self.waiter = waiter

    @classmethod
    def from_config(
        cls,
        config: WorkflowConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "SwapWorkflow":
        """
        Create a SwapWorkflow with real chain and order book clients.

        No network request is made until :meth:`run` is called.

        Args:
            config: Validated workflow configuration
            transport: Optional HTTP transport for the order book client

        Returns:
            Configured SwapWorkflow instance
        """
        settings = config.settings
        connector = ChainConnector(
            rpc_url=config.credentials.rpc_url,
            chain=config.chain,
            private_key=config.credentials.signer_private_key,
            request_timeout=settings.request_timeout,
            retry_count=settings.retry_count,
        )
        return cls(
            config=config,
            connector=connector,
            wallet=SafeWallet(connector, config.credentials.safe_address),
            tokens=TokenOperations(config.chain.wrapped_native_token),
            order_book=OrderBookClient(
                config.order_book_url,
                timeout=settings.request_timeout,
                retry_count=settings.retry_count,
                transport=transport,
            ),
            waiter=TransactionWaiter(
                connector.read,
                timeout=settings.confirmation_timeout,
                poll_interval=settings.poll_interval,
            ),
        )

    @property
    def safe_address(self) -> str:
        return self.config.credentials.safe_address

    async def run(self, mode: WorkflowMode = WorkflowMode.SWAP) -> WorkflowResult:
        """
        Run the workflow.

        Errors do not escape: they are recorded on the returned result and
        the caller decides how to report them.

        Args:
            mode: Which part of the workflow to run

        Returns:
            WorkflowResult describing what happened
        """
        mode = WorkflowMode(mode)
        result = WorkflowResult(mode=mode.value)
        logger.info(f"=== Safe swap workflow starting (mode: {mode.value}) ===")

        try:
            await self._run_steps(mode, result)
            result.success = True
            logger.info("=== ✓ Workflow completed ===")
        except Exception as e:
            logger.error(f"✗ Workflow failed: {type(e).__name__}: {e}", exc_info=True)
            result.error = e

        return result

    async def _run_steps(self, mode: WorkflowMode, result: WorkflowResult) -> None:
        executes_transactions = mode is not WorkflowMode.QUOTE
        self.check_preconditions(require_signer=executes_transactions)

        result.balances["before"] = self.snapshot_balances("before")

        if executes_transactions:
            result.batch_tx_hash = self.fund_and_authorize()

        match mode:
            case WorkflowMode.QUOTE:
                result.quote = await self.order_book.get_quote(self.build_quote_request())
            case WorkflowMode.SWAP:
                await self.place_presigned_order(result)

        result.balances["after"] = self.snapshot_balances("after")

    def check_preconditions(self, require_signer: bool = True) -> None:
        """
        Verify the chain and the Safe before anything is sent.

        Raises:
            ConfigurationError: If the node serves another chain
            SafeNotDeployedError: If the Safe has no code
            PreconditionError: If the signer cannot execute alone
        """
        self.connector.verify_chain()

        if not self.wallet.is_deployed():
            raise SafeNotDeployedError(self.safe_address)
        logger.info(f"✓ Safe {self.safe_address} is deployed")

        if require_signer:
            self.wallet.verify_signer()
            logger.info("✓ Signer can execute Safe transactions")

    def snapshot_balances(self, label: str) -> dict[str, int]:
        """Read and log the Safe's balances and its vault relayer allowance."""
        balances = {
            "native": self.connector.get_balance(self.safe_address),
            "wrapped": self.connector.token_balance(self.tokens.token_address, self.safe_address),
            "buy": self.connector.token_balance(self.config.buy_token, self.safe_address),
            "allowance": self.connector.token_allowance(
                self.tokens.token_address, self.safe_address, self.config.chain.vault_relayer
            ),
        }
        logger.info(f"Native balance {label}: [{balances['native']}]")
        logger.info(f"Wrapped balance {label}: [{balances['wrapped']}]")
        logger.info(f"Buy token balance {label}: [{balances['buy']}]")
        logger.info(f"Vault relayer allowance {label}: [{balances['allowance']}]")
        return balances

    def fund_and_authorize(self) -> str:
        """
        Wrap the input amount and approve the vault relayer for it.

        Both calls go into one Safe transaction, wrap first, so the approval
        never refers to a balance the Safe does not hold yet.

        Returns:
            Hash of the mined batch transaction
        """
        amount = self.config.settings.input_amount
        spender = self.config.chain.vault_relayer

        requests = self.tokens.fund_and_authorize(spender, amount)
        batch = self.wallet.create_batch(requests, calls_only=True)
        logger.info(f"Executing wrap + approve batch ({len(batch)} calls, {amount} wei)")

        tx_hash = self.wallet.execute(batch)
        self.waiter.wait(tx_hash)
        logger.info(f"✓ Deposit and approve transaction executed [{tx_hash}]")
        return tx_hash

    def build_quote_request(self) -> QuoteRequest:
        return QuoteRequest(
            sell_token=self.tokens.token_address,
            buy_token=self.config.buy_token,
            amount=self.config.settings.input_amount,
            from_address=self.safe_address,
            receiver=self.safe_address,
            kind=OrderKind.SELL,
            signing_scheme=SigningScheme.PRESIGN,
            app_data=build_app_data(self.config.settings.app_code),
        )

    async def post_order_with_fresh_quote(self, request: QuoteRequest) -> tuple[Quote, str]:
        """
        Quote and post an order, re-quoting when the quote goes stale.

        Returns:
            The quote the order was built from and the order uid

        Raises:
            QuoteExpiredError: If every attempt ran into an expired quote
        """
        attempts = self.config.settings.quote_retries + 1
        last_error: QuoteExpiredError | None = None

        for attempt in range(1, attempts + 1):
            quote = await self.order_book.get_quote(request)

            if quote.is_expired():
                last_error = QuoteExpiredError(f"Quote expired at {quote.expiration.isoformat()}")
                logger.warning(f"{last_error}; fetching a fresh quote ({attempt}/{attempts})")
                continue

            order = OrderCreation.from_quote(
                request, quote, slippage_bps=self.config.settings.slippage_bps
            )
            try:
                return quote, await self.order_book.post_order(order)
            except QuoteExpiredError as e:
                last_error = e
                logger.warning(f"Order book reports a stale quote; re-quoting ({attempt}/{attempts})")

        raise last_error

    async def place_presigned_order(self, result: WorkflowResult) -> None:
        """
        Post an order and presign it through the Safe.

        In the presign flow the order is posted without a signature; the
        Safe then calls ``setPreSignature`` on the settlement contract, which
        is what authorises the order.
        """
        logger.info("1. Posting the order (not signed yet)")
        quote, order_uid = await self.post_order_with_fresh_quote(self.build_quote_request())
        result.quote = quote
        result.order_uid = order_uid
        logger.info(f"Order created, id: {self.config.chain.explorer_order_url(order_uid)}")

        logger.info("2. Presigning the order through the Safe")
        batch = self.wallet.create_batch(
            [presign_request(self.config.chain.settlement, order_uid)], calls_only=True
        )
        tx_hash = self.wallet.execute(batch)

        logger.info("3. Waiting for the presign transaction to be mined")
        self.waiter.wait(tx_hash)
        result.presign_tx_hash = tx_hash

        order = await self.order_book.get_order(order_uid)
        result.order_status = order.status
        result.trades = await self.order_book.get_trades(order_uid)
        logger.info(f"Order status: {order.status.value}, trades: {len(result.trades)}")


async def run_swap(
    mode: WorkflowMode = WorkflowMode.SWAP,
    env: Mapping[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> WorkflowResult:
    """
    Load configuration, build the workflow and run it.

    Configuration is validated before any client is created, so a bad
    configuration never causes network traffic.

    Args:
        mode: Which part of the workflow to run
        env: Environment mapping (defaults to ``os.environ``)
        transport: Optional HTTP transport for the order book client

    Returns:
        WorkflowResult of the run, with ``error`` set on failure
    """
    mode = WorkflowMode(mode)
    try:
        config = WorkflowConfig.from_env(env)
    except ConfigurationError as e:
        logger.error(f"Configuration Error: {e}")
        return WorkflowResult(mode=mode.value, error=e)

    config.log_config()
    workflow = SwapWorkflow.from_config(config, transport=transport)
    return await workflow.run(mode)
