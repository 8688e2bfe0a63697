#!/usr/bin/env python3
"""Safe smart-contract wallet client.

All state-changing operations of the workflow go through the Safe: calls
are collected into a batch, resolved into a single Safe transaction (a
MultiSend delegate call when there is more than one), signed by an owner
and submitted with ``execTransaction``. The MultiSend contracts revert the
whole Safe transaction if any sub-call reverts, so a batch is atomic.
"""

import logging
from collections.abc import Sequence

from eth_abi.packed import encode_packed
from hexbytes import HexBytes
from requests.exceptions import RequestException
from web3 import Web3
from web3.contract import Contract
from web3.exceptions import Web3Exception

from .exceptions import BatchError, PreconditionError, TransactionSubmissionError
from .models import ZERO_ADDRESS, BatchedTransaction, ChainTransactionRequest, OperationType
from .utils.chain_connector import ChainConnector, load_contract_abi

logger = logging.getLogger(__name__)

# operation (1) + to (20) + value (32) + data length (32)
_MULTISEND_HEADER_LENGTH = 85


def encode_multisend(transactions: Sequence[ChainTransactionRequest]) -> bytes:
    """Pack transactions into the MultiSend ``transactions`` argument.

    Each entry is ``uint8 operation | address to | uint256 value |
    uint256 dataLength | bytes data``, concatenated in order.
    """
    return b"".join(
        encode_packed(
            ["uint8", "address", "uint256", "uint256", "bytes"],
            [int(tx.operation), tx.to, tx.value, len(tx.data_bytes), tx.data_bytes],
        )
        for tx in transactions
    )


def decode_multisend(packed: bytes) -> list[ChainTransactionRequest]:
    """Reverse of :func:`encode_multisend`.

    Raises:
        ValueError: If the payload is truncated
    """
    transactions: list[ChainTransactionRequest] = []
    offset = 0
    while offset < len(packed):
        header = packed[offset:offset + _MULTISEND_HEADER_LENGTH]
        if len(header) < _MULTISEND_HEADER_LENGTH:
            raise ValueError(f"Truncated MultiSend entry at offset {offset}")

        operation = header[0]
        to = Web3.to_checksum_address(header[1:21])
        value = int.from_bytes(header[21:53], "big")
        data_length = int.from_bytes(header[53:85], "big")

        start = offset + _MULTISEND_HEADER_LENGTH
        data = packed[start:start + data_length]
        if len(data) != data_length:
            raise ValueError(f"Truncated MultiSend data at offset {start}")

        transactions.append(
            ChainTransactionRequest(to=to, value=value, data=data, operation=OperationType(operation))
        )
        offset = start + data_length
    return transactions


def encode_multisend_call(transactions: Sequence[ChainTransactionRequest]) -> str:
    """Calldata for ``multiSend(bytes)`` over the given transactions."""
    multisend = Web3().eth.contract(abi=list(load_contract_abi("MultiSend")))
    return multisend.encode_abi("multiSend", args=[encode_multisend(transactions)])


class SafeWallet:
    """Client of one deployed Safe, acting through a single owner key."""

    def __init__(self, connector: ChainConnector, safe_address: str) -> None:
        """
        Initialize the SafeWallet.

        Args:
            connector: Chain connections, with a signer that owns the Safe
            safe_address: Address of the Safe
        """
        self.connector: ChainConnector = connector
        self.safe_address: str = Web3.to_checksum_address(safe_address)

        self.contract: Contract = connector.contract(self.safe_address, "Safe")
        self.write_contract: Contract = connector.contract(self.safe_address, "Safe", writable=True)

        logger.info(f"SafeWallet initialized for {self.safe_address} on {connector.chain.name}")

    def is_deployed(self) -> bool:
        """Whether contract code exists at the Safe address."""
        code: bytes = self.connector.read.eth.get_code(self.safe_address)
        deployed = len(code) > 0
        logger.debug(f"Safe {self.safe_address} deployed: {deployed}")
        return deployed

    def get_nonce(self) -> int:
        return self.contract.functions.nonce().call()

    def verify_signer(self) -> None:
        """Check that the configured key alone can execute Safe transactions.

        Raises:
            PreconditionError: If the signer is not an owner or the threshold is above one
        """
        signer = self.connector.signer_address
        if not self.contract.functions.isOwner(signer).call():
            raise PreconditionError(f"Signer {signer} is not an owner of Safe {self.safe_address}")

        threshold: int = self.contract.functions.getThreshold().call()
        if threshold != 1:
            raise PreconditionError(
                f"Safe {self.safe_address} needs {threshold} signatures; "
                "only single-owner execution is supported"
            )

    def create_batch(
        self,
        requests: Sequence[ChainTransactionRequest],
        calls_only: bool = True,
    ) -> BatchedTransaction:
        """Resolve an ordered list of calls into one Safe transaction.

        Args:
            requests: Calls to execute, in execution order
            calls_only: Use MultiSendCallOnly, which refuses delegate calls

        Returns:
            BatchedTransaction preserving the order of ``requests``

        Raises:
            BatchError: If the batch is empty or needs a path that is unavailable
        """
        transactions = tuple(requests)
        if not transactions:
            raise BatchError("Cannot create an empty batch")

        has_delegate_call = any(tx.operation is OperationType.DELEGATE_CALL for tx in transactions)
        if calls_only and has_delegate_call:
            raise BatchError("Batch contains delegate calls but calls_only was requested")

        if len(transactions) == 1:
            tx = transactions[0]
            return BatchedTransaction(
                transactions=transactions,
                to=tx.to,
                value=tx.value,
                data=tx.data,
                operation=tx.operation,
                calls_only=calls_only,
            )

        chain = self.connector.chain
        if calls_only:
            multisend_address = chain.multi_send_call_only
        elif chain.multi_send:
            multisend_address = chain.multi_send
        else:
            raise BatchError(f"No MultiSend contract configured on {chain.name}")

        logger.debug(f"Packing {len(transactions)} transactions for MultiSend at {multisend_address}")
        return BatchedTransaction(
            transactions=transactions,
            to=multisend_address,
            value=0,
            data=encode_multisend_call(transactions),
            operation=OperationType.DELEGATE_CALL,
            calls_only=calls_only,
        )

    def _sign(self, safe_tx_hash: bytes) -> bytes:
        account = self.connector.account
        if account is None:
            raise PreconditionError("No signer configured for Safe execution")
        signed = account.unsafe_sign_hash(safe_tx_hash)
        return bytes(signed.signature)

    def execute(self, batch: BatchedTransaction) -> str:
        """Sign and submit a batch as one ``execTransaction``.

        Args:
            batch: Batch built by :meth:`create_batch`

        Returns:
            Hash of the submitted transaction (0x-prefixed hex)

        Raises:
            TransactionSubmissionError: If the node rejects the transaction or
                cannot be reached while submitting it
        """
        data = HexBytes(batch.data)
        operation = int(batch.operation)
        nonce = self.get_nonce()

        safe_tx_hash: bytes = self.contract.functions.getTransactionHash(
            batch.to, batch.value, data, operation, 0, 0, 0, ZERO_ADDRESS, ZERO_ADDRESS, nonce
        ).call()
        signature = self._sign(safe_tx_hash)
        logger.debug(f"Signed Safe transaction {Web3.to_hex(safe_tx_hash)} (nonce {nonce})")

        try:
            tx_hash: HexBytes = self.write_contract.functions.execTransaction(
                batch.to, batch.value, data, operation, 0, 0, 0, ZERO_ADDRESS, ZERO_ADDRESS, signature
            ).transact()
        except Web3Exception as e:
            logger.error(f"✗ Safe transaction rejected: {e}")
            raise TransactionSubmissionError(f"Safe transaction rejected: {e}") from e
        except RequestException as e:
            logger.error(f"✗ Safe transaction not confirmed by the node: {e}")
            raise TransactionSubmissionError(
                f"Node unreachable while submitting Safe transaction, broadcast state unknown: {e}"
            ) from e

        tx_hash_hex = Web3.to_hex(tx_hash)
        route = "MultiSend" if batch.is_multi_send else "direct call"
        logger.info(f"✓ Safe transaction submitted: {tx_hash_hex} ({len(batch)} call(s) via {route})")
        return tx_hash_hex
