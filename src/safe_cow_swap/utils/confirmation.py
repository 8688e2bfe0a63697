import logging

from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import TimeExhausted
from web3.types import TxReceipt

from ..exceptions import ConfirmationTimeoutError, TransactionRevertedError
from ..models import TransactionReceipt

logger = logging.getLogger(__name__)


class TransactionWaiter:
    """Blocks until a transaction is mined and checks that it succeeded."""

    def __init__(self, w3: Web3, timeout: float = 120, poll_interval: float = 2.0) -> None:
        """
        Args:
            w3: Web3 instance connected to the chain the transaction was sent to
            timeout: Seconds to wait for inclusion before giving up
            poll_interval: Seconds between receipt lookups
        """
        self.w3 = w3
        self.timeout = timeout
        self.poll_interval = poll_interval

    def wait(self, tx_hash: str | bytes) -> TransactionReceipt:
        """
        Wait for a transaction receipt.

        Args:
            tx_hash: Hash returned when the transaction was submitted

        Returns:
            Receipt of the successfully mined transaction

        Raises:
            ConfirmationTimeoutError: If the transaction is not mined in time
            TransactionRevertedError: If the transaction was mined but reverted
        """
        tx_hash_hex = Web3.to_hex(HexBytes(tx_hash))
        logger.info(f"Waiting for {tx_hash_hex} to be mined (timeout {self.timeout}s)...")

        try:
            receipt: TxReceipt = self.w3.eth.wait_for_transaction_receipt(
                HexBytes(tx_hash),
                timeout=self.timeout,
                poll_latency=self.poll_interval,
            )
        except TimeExhausted:
            logger.error(f"✗ Transaction {tx_hash_hex} not mined after {self.timeout}s")
            raise ConfirmationTimeoutError(tx_hash_hex, self.timeout) from None

        result = TransactionReceipt.from_web3(receipt)

        # Use walrus operator for status check
        if (status := result.status) != 1:
            logger.error(f"✗ Transaction {tx_hash_hex} failed with status={status}")
            raise TransactionRevertedError(tx_hash_hex, result)

        logger.info(f"✓ Transaction confirmed in block {result.block_number}")
        return result
