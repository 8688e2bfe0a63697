#!/usr/bin/env python3
"""Configuration management for the Safe swap workflow.

This module provides type-safe configuration dataclasses with validation.
Credentials are required and are checked before any network connection is
opened; the remaining settings have defaults suited to a one-off swap.
"""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from urllib.parse import urlparse

from web3 import Web3

from .chains import ChainDefinition, get_chain
from .exceptions import ConfigurationError

# Get logger for this module
logger = logging.getLogger(__name__)

REQUIRED_ENV_VARS: tuple[str, ...] = ("SAFE_ADDRESS", "SIGNER_PRIVATE_KEY", "RPC_URL")

DEFAULT_INPUT_AMOUNT = 20_000_000_000_000_000  # 0.02 ETH
DEFAULT_APP_CODE = "safe-cow-swap"


@dataclass(frozen=True, slots=True)
class Credentials:
    """Secrets and endpoints needed to act on behalf of the Safe.

    Attributes:
        safe_address: Checksummed address of the Safe wallet
        signer_private_key: Private key of a Safe owner (hex, optional 0x prefix)
        rpc_url: HTTP(S) RPC endpoint of the chain node
    """

    safe_address: str
    signer_private_key: str = field(repr=False)
    rpc_url: str

    def __post_init__(self) -> None:
        """Validate credentials."""
        if not self.safe_address:
            raise ConfigurationError("Safe address is required (SAFE_ADDRESS)")
        if not Web3.is_address(self.safe_address):
            raise ConfigurationError(f"Invalid Safe address: {self.safe_address}")

        checksummed = Web3.to_checksum_address(self.safe_address)
        if checksummed != self.safe_address:
            # Use object.__setattr__ since dataclass is frozen
            object.__setattr__(self, "safe_address", checksummed)

        if not self.signer_private_key:
            raise ConfigurationError("Signer private key is required (SIGNER_PRIVATE_KEY)")

        key = self.signer_private_key.removeprefix("0x")
        if len(key) != 64:
            raise ConfigurationError(
                f"Invalid private key length. Expected 64 hex characters, got {len(key)}"
            )
        try:
            int(key, 16)
        except ValueError:
            raise ConfigurationError("Invalid private key format. Must be hexadecimal") from None

        if not self.rpc_url:
            raise ConfigurationError("RPC URL is required (RPC_URL)")

        parsed = urlparse(self.rpc_url)
        if parsed.scheme not in ("http", "https"):
            raise ConfigurationError(
                f"Invalid RPC URL scheme: {parsed.scheme or '(none)'}. "
                "Expected http or https"
            )
        if not parsed.netloc:
            raise ConfigurationError(f"Invalid RPC URL: {self.rpc_url}")


@dataclass(frozen=True, slots=True)
class SwapSettings:
    """Parameters of the swap and of the network interactions."""

    input_amount: int = DEFAULT_INPUT_AMOUNT
    buy_token: str | None = None
    slippage_bps: int = 50
    app_code: str = DEFAULT_APP_CODE
    confirmation_timeout: int = 120  # seconds to wait for a receipt
    poll_interval: float = 2.0  # seconds between receipt polls
    request_timeout: int = 30  # HTTP request timeout in seconds
    retry_count: int = 3  # retries for idempotent reads
    quote_retries: int = 2  # fresh quotes fetched after an expiry
    order_book_url: str | None = None

    def __post_init__(self) -> None:
        """Validate swap settings."""
        if self.input_amount <= 0:
            raise ConfigurationError(f"Input amount must be positive, got {self.input_amount}")

        if self.buy_token is not None:
            if not Web3.is_address(self.buy_token):
                raise ConfigurationError(f"Invalid buy token address: {self.buy_token}")
            object.__setattr__(self, "buy_token", Web3.to_checksum_address(self.buy_token))

        if not 0 <= self.slippage_bps < 10_000:
            raise ConfigurationError(f"Slippage must be within [0, 10000) bps, got {self.slippage_bps}")

        if not self.app_code:
            raise ConfigurationError("App code must not be empty")

        if not 0 < self.confirmation_timeout <= 3600:
            raise ConfigurationError(
                f"Confirmation timeout must be within (0, 3600] seconds, got {self.confirmation_timeout}"
            )
        if self.poll_interval <= 0:
            raise ConfigurationError(f"Poll interval must be positive, got {self.poll_interval}")
        if not 0 < self.request_timeout <= 120:
            raise ConfigurationError(
                f"Request timeout must be within (0, 120] seconds, got {self.request_timeout}"
            )
        if not 0 <= self.retry_count <= 10:
            raise ConfigurationError(f"Retry count must be within [0, 10], got {self.retry_count}")
        if not 0 <= self.quote_retries <= 10:
            raise ConfigurationError(f"Quote retries must be within [0, 10], got {self.quote_retries}")

        if self.order_book_url is not None:
            parsed = urlparse(self.order_book_url)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise ConfigurationError(f"Invalid order book URL: {self.order_book_url}")
            object.__setattr__(self, "order_book_url", self.order_book_url.rstrip("/"))


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name) or str(default)
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name) or str(default)
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from None


@dataclass(frozen=True, slots=True)
class WorkflowConfig:
    """Main configuration of a swap run.

    Attributes:
        credentials: Safe address, owner key and RPC endpoint
        chain: Definition of the chain the Safe lives on
        settings: Swap amount, slippage, timeouts and retries
    """

    credentials: Credentials
    chain: ChainDefinition
    settings: SwapSettings = field(default_factory=SwapSettings)

    @property
    def buy_token(self) -> str:
        return self.settings.buy_token or self.chain.default_buy_token

    @property
    def order_book_url(self) -> str:
        return self.settings.order_book_url or self.chain.order_book_url

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "WorkflowConfig":
        """Load configuration from environment variables.

        Args:
            env: Mapping to read from (defaults to ``os.environ``)

        Returns:
            WorkflowConfig instance with loaded values

        Raises:
            ConfigurationError: If required variables are missing or any value is invalid
        """
        env = os.environ if env is None else env

        if missing := [name for name in REQUIRED_ENV_VARS if not env.get(name)]:
            raise ConfigurationError(
                f"Missing environment variables: {', '.join(missing)}"
            )

        credentials = Credentials(
            safe_address=env["SAFE_ADDRESS"],
            signer_private_key=env["SIGNER_PRIVATE_KEY"],
            rpc_url=env["RPC_URL"],
        )

        chain = get_chain(env.get("NETWORK") or "mainnet")

        settings = SwapSettings(
            input_amount=_env_int(env, "INPUT_AMOUNT", DEFAULT_INPUT_AMOUNT),
            buy_token=env.get("BUY_TOKEN") or None,
            slippage_bps=_env_int(env, "SLIPPAGE_BPS", 50),
            app_code=env.get("APP_CODE") or DEFAULT_APP_CODE,
            confirmation_timeout=_env_int(env, "CONFIRMATION_TIMEOUT", 120),
            poll_interval=_env_float(env, "POLL_INTERVAL", 2.0),
            request_timeout=_env_int(env, "REQUEST_TIMEOUT", 30),
            retry_count=_env_int(env, "RETRY_COUNT", 3),
            quote_retries=_env_int(env, "QUOTE_RETRIES", 2),
            order_book_url=env.get("ORDER_BOOK_URL") or None,
        )

        return cls(credentials=credentials, chain=chain, settings=settings)

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("Safe Swap Configuration")
        logger.info("=" * 60)

        logger.info("Wallet:")
        logger.info(f"  Safe: {self.credentials.safe_address}")
        logger.info("  Signer Key: [CONFIGURED]")
        logger.info(f"  RPC URL: {self.credentials.rpc_url}")

        logger.info("Chain:")
        logger.info(f"  Network: {self.chain.name} (chain id {self.chain.chain_id})")
        logger.info(f"  Wrapped Native Token: {self.chain.wrapped_native_token}")
        logger.info(f"  Order Book: {self.order_book_url}")

        logger.info("Swap Settings:")
        logger.info(f"  Input Amount: {self.settings.input_amount} wei")
        logger.info(f"  Buy Token: {self.buy_token}")
        logger.info(f"  Slippage: {self.settings.slippage_bps} bps")
        logger.info(f"  App Code: {self.settings.app_code}")
        logger.info(f"  Confirmation Timeout: {self.settings.confirmation_timeout} seconds")
        logger.info(f"  Request Timeout: {self.settings.request_timeout} seconds")
        logger.info(f"  Retry Count: {self.settings.retry_count}")

        logger.info("=" * 60)
