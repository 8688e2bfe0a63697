#!/usr/bin/env python3
"""Shared fixtures for the safe-cow-swap tests."""

import time
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from web3 import Web3

from safe_cow_swap.chains import MAINNET

TEST_PRIVATE_KEY = "0x" + "1" * 64
SAFE_ADDRESS = Web3.to_checksum_address("0x5afe5afe5afe5afe5afe5afe5afe5afe5afe5afe")
OTHER_ADDRESS = Web3.to_checksum_address("0x742d35cc6634c0532925a3b844bc9e7595f0beb7")
TEST_RPC_URL = "https://rpc.test.local"
ORDER_UID = "0x" + "ab" * 56


def iso_in(seconds: int) -> str:
    """ISO timestamp ``seconds`` from now, in the order book's format."""
    moment = datetime.now(timezone.utc) + timedelta(seconds=seconds)
    return moment.isoformat().replace("+00:00", "Z")


def make_quote_payload(
    sell_amount_before_fee: int,
    sell_token: str = MAINNET.wrapped_native_token,
    buy_token: str = MAINNET.default_buy_token,
    fee_amount: int = 1_000_000_000_000,
    buy_amount: int = 50_000_000,
    expires_in: int = 600,
    valid_for: int = 1800,
) -> dict[str, Any]:
    """Build a quote response as returned by POST /api/v1/quote."""
    return {
        "quote": {
            "sellToken": sell_token.lower(),
            "buyToken": buy_token.lower(),
            "receiver": SAFE_ADDRESS.lower(),
            "sellAmount": str(sell_amount_before_fee - fee_amount),
            "buyAmount": str(buy_amount),
            "validTo": int(time.time()) + valid_for,
            "appData": "0x" + "00" * 32,
            "feeAmount": str(fee_amount),
            "kind": "sell",
            "partiallyFillable": False,
            "sellTokenBalance": "erc20",
            "buyTokenBalance": "erc20",
            "signingScheme": "presign",
        },
        "from": SAFE_ADDRESS.lower(),
        "expiration": iso_in(expires_in),
        "id": 4242,
        "verified": True,
    }


def make_order_payload(status: str = "open", uid: str = ORDER_UID) -> dict[str, Any]:
    """Build an order as returned by GET /api/v1/orders/{uid}."""
    return {
        "uid": uid,
        "owner": SAFE_ADDRESS.lower(),
        "status": status,
        "sellToken": MAINNET.wrapped_native_token.lower(),
        "buyToken": MAINNET.default_buy_token.lower(),
        "sellAmount": "20000000000000000",
        "buyAmount": "49750000",
        "validTo": int(time.time()) + 1800,
        "kind": "sell",
        "signingScheme": "presign",
        "executedSellAmount": "0",
        "executedBuyAmount": "0",
    }


@pytest.fixture
def valid_env() -> dict[str, str]:
    """A complete environment for a mainnet run."""
    return {
        "SAFE_ADDRESS": SAFE_ADDRESS,
        "SIGNER_PRIVATE_KEY": TEST_PRIVATE_KEY,
        "RPC_URL": TEST_RPC_URL,
        "NETWORK": "mainnet",
        "INPUT_AMOUNT": "20000000000000000",
    }
