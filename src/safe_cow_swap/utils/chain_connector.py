import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from requests.exceptions import ConnectionError, HTTPError, Timeout
from web3 import Web3
from web3.contract import Contract
from web3.middleware import SignAndSendRawMiddlewareBuilder
from web3.providers.rpc.utils import ExceptionRetryConfiguration

from ..chains import ChainDefinition
from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONTRACTS_DIR: Path = Path(__file__).parent.parent / "contracts"


@lru_cache(maxsize=None)
def load_contract_abi(contract_name: str) -> tuple[dict[str, Any], ...]:
    """Load the ABI of a bundled contract.

    Args:
        contract_name: Name of the contract (without .json extension)

    Returns:
        Tuple of ABI entries for the contract

    Raises:
        FileNotFoundError: If the contract file doesn't exist
        json.JSONDecodeError: If the contract file is invalid JSON
    """
    contract_path: Path = (CONTRACTS_DIR / f"{contract_name}.json").resolve()

    with contract_path.open() as file:
        contract_data: dict[str, Any] = json.load(file)

    return tuple(contract_data["abi"])


class ChainConnector:
    """
    Read and write connections to one chain.

    ``read`` is a plain Web3 instance for balance and contract-state queries.
    ``write`` carries signing middleware for the configured private key so
    that ``transact()`` calls are signed locally and sent raw.
    """

    def __init__(
        self,
        rpc_url: str,
        chain: ChainDefinition,
        private_key: str = "",
        request_timeout: int = 30,
        retry_count: int = 3,
    ) -> None:
        """
        Initialize the ChainConnector.

        Args:
            rpc_url: RPC URL of the chain node (required)
            chain: Chain the node is expected to serve
            private_key: Signer key (optional - without it only ``read`` is usable)
            request_timeout: Timeout of each RPC request in seconds
            retry_count: Retries for idempotent RPC reads
        """
        if not rpc_url:
            raise ValueError("RPC URL is required")

        self.rpc_url = rpc_url
        self.chain = chain
        self.account: LocalAccount | None = None

        self.read = Web3(self._provider(request_timeout, retry_count))
        self.write = Web3(self._provider(request_timeout, retry_count))

        if private_key:
            self._add_signing_middleware(private_key)

    def _provider(self, request_timeout: int, retry_count: int) -> Web3.HTTPProvider:
        # web3 only retries allow-listed read methods, never sendRawTransaction
        return Web3.HTTPProvider(
            self.rpc_url,
            request_kwargs={"timeout": request_timeout},
            exception_retry_configuration=ExceptionRetryConfiguration(
                errors=(ConnectionError, HTTPError, Timeout),
                retries=retry_count,
                backoff_factor=0.5,
            ),
        )

    def _add_signing_middleware(self, private_key: str) -> None:
        """
        Add signing middleware to the write Web3 instance.

        Args:
            private_key: Private key for signing transactions
        """
        account: LocalAccount = Account.from_key(private_key)
        self.write.middleware_onion.add(SignAndSendRawMiddlewareBuilder.build(account))
        self.write.eth.default_account = account.address
        self.account = account

    @property
    def signer_address(self) -> str:
        if self.account is None:
            raise ValueError("No signer configured")
        return self.account.address

    def verify_chain(self) -> int:
        """Check that the node serves the configured chain.

        Returns:
            The chain id reported by the node

        Raises:
            ConfigurationError: If the node reports a different chain id
        """
        chain_id: int = self.read.eth.chain_id
        if chain_id != self.chain.chain_id:
            raise ConfigurationError(
                f"RPC node reports chain id {chain_id}, "
                f"expected {self.chain.chain_id} ({self.chain.name})"
            )
        logger.info(f"Connected to {self.chain.name} (chain id {chain_id})")
        return chain_id

    def get_contract_abi(self, contract_name: str) -> list[dict[str, Any]]:
        """Fetches ABI of the given contract from the contracts folder."""
        return list(load_contract_abi(contract_name))

    def contract(self, address: str, contract_name: str, writable: bool = False) -> Contract:
        """Bind a bundled ABI to an address on the read or write connection."""
        w3 = self.write if writable else self.read
        return w3.eth.contract(
            address=Web3.to_checksum_address(address),
            abi=self.get_contract_abi(contract_name),
        )

    def get_balance(self, address: str) -> int:
        """Native currency balance of an address, in wei."""
        return self.read.eth.get_balance(Web3.to_checksum_address(address))

    def token_balance(self, token: str, owner: str) -> int:
        """ERC-20 balance of ``owner``."""
        return self.contract(token, "WETH9").functions.balanceOf(
            Web3.to_checksum_address(owner)
        ).call()

    def token_allowance(self, token: str, owner: str, spender: str) -> int:
        """ERC-20 allowance granted by ``owner`` to ``spender``."""
        return self.contract(token, "WETH9").functions.allowance(
            Web3.to_checksum_address(owner),
            Web3.to_checksum_address(spender),
        ).call()
