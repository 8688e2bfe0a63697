"""Calldata encoding for the wrapped-native token.

Nothing in this module talks to a node: calldata is produced from the
bundled WETH9 ABI and packaged as Safe transaction requests.
"""

import logging

from web3 import Web3
from web3.contract import Contract

from .models import ChainTransactionRequest, OperationType
from .utils.chain_connector import load_contract_abi

logger = logging.getLogger(__name__)


class TokenOperations:
    """Encodes wrap and approve calls for one WETH-style token."""

    def __init__(self, token_address: str) -> None:
        """
        Args:
            token_address: Address of the wrapped native token contract
        """
        self.token_address: str = Web3.to_checksum_address(token_address)
        # Encoding only; the provider is never used
        self._contract: Contract = Web3().eth.contract(abi=list(load_contract_abi("WETH9")))

    def encode_wrap(self) -> str:
        """Calldata for ``deposit()``.

        The call must carry the amount to wrap as its native value.
        """
        return self._contract.encode_abi("deposit", args=[])

    def encode_approve(self, spender: str, amount: int) -> str:
        """Calldata for ``approve(spender, amount)``.

        Approve sets the allowance to exactly ``amount``; it does not add to
        an existing allowance. Changing a non-zero allowance to another
        non-zero value lets the spender use the old allowance before the
        update lands, so callers replacing an allowance should reset it to
        zero first.

        Args:
            spender: Contract allowed to move the tokens
            amount: Absolute allowance in token base units

        Returns:
            0x-prefixed calldata
        """
        if amount < 0:
            raise ValueError(f"Allowance must be non-negative, got {amount}")
        return self._contract.encode_abi(
            "approve", args=[Web3.to_checksum_address(spender), amount]
        )

    def wrap_request(self, amount: int) -> ChainTransactionRequest:
        """Safe transaction converting ``amount`` wei of native currency to tokens."""
        if amount <= 0:
            raise ValueError(f"Wrap amount must be positive, got {amount}")
        return ChainTransactionRequest(
            to=self.token_address,
            value=amount,
            data=self.encode_wrap(),
            operation=OperationType.CALL,
        )

    def approve_request(self, spender: str, amount: int) -> ChainTransactionRequest:
        """Safe transaction setting the allowance of ``spender`` to ``amount``."""
        return ChainTransactionRequest(
            to=self.token_address,
            value=0,
            data=self.encode_approve(spender, amount),
            operation=OperationType.CALL,
        )

    def fund_and_authorize(self, spender: str, amount: int) -> list[ChainTransactionRequest]:
        """Wrap ``amount`` and approve ``spender`` for it, in that order."""
        logger.debug(f"Encoding wrap + approve of {amount} for spender {spender}")
        return [self.wrap_request(amount), self.approve_request(spender, amount)]
