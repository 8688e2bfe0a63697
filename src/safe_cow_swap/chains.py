"""Chain definitions supported by the swap workflow.

Each definition bundles the chain id with the contract addresses the
workflow needs on that chain: the wrapped native token, the CoW Protocol
settlement and vault relayer, and the Safe MultiSend contracts.
"""

from dataclasses import dataclass

from web3 import Web3

from .exceptions import ConfigurationError

# CoW Protocol and Safe v1.3.0 contracts share these addresses on every supported chain
GPV2_SETTLEMENT = Web3.to_checksum_address("0x9008d19f58aabd9ed0d60971565aa8510560ab41")
GPV2_VAULT_RELAYER = Web3.to_checksum_address("0xc92e8bdf79f0507f65a392b0ab4667716bfe0110")
MULTI_SEND = Web3.to_checksum_address("0xa238cbeb142c10ef7ad8442c6d1f9e89e07e7761")
MULTI_SEND_CALL_ONLY = Web3.to_checksum_address("0x40a2accbd92bca938b02010e17a5b8929b49130d")

COW_API_BASE = "https://api.cow.fi"
COW_EXPLORER_BASE = "https://explorer.cow.fi"


@dataclass(frozen=True, slots=True)
class ChainDefinition:
    """Static description of a chain the workflow can run on.

    Attributes:
        chain_id: EIP-155 chain id the RPC node must report
        name: Network name used in configuration (NETWORK)
        api_network: Path segment of the CoW order book API for this chain
        explorer_prefix: Path prefix on the CoW explorer ('' for mainnet)
        wrapped_native_token: WETH-style token that ``deposit()`` mints
        default_buy_token: Token bought when BUY_TOKEN is not set
        settlement: GPv2Settlement contract (target of presign calls)
        vault_relayer: GPv2VaultRelayer contract (spender to approve)
        multi_send: MultiSend contract (supports delegate calls), if deployed
        multi_send_call_only: MultiSendCallOnly contract
    """

    chain_id: int
    name: str
    api_network: str
    explorer_prefix: str
    wrapped_native_token: str
    default_buy_token: str
    settlement: str = GPV2_SETTLEMENT
    vault_relayer: str = GPV2_VAULT_RELAYER
    multi_send: str | None = MULTI_SEND
    multi_send_call_only: str = MULTI_SEND_CALL_ONLY

    @property
    def order_book_url(self) -> str:
        return f"{COW_API_BASE}/{self.api_network}"

    def explorer_order_url(self, order_uid: str) -> str:
        """Link to an order on the CoW explorer."""
        prefix = f"/{self.explorer_prefix}" if self.explorer_prefix else ""
        return f"{COW_EXPLORER_BASE}{prefix}/orders/{order_uid}?tab=overview"


MAINNET = ChainDefinition(
    chain_id=1,
    name="mainnet",
    api_network="mainnet",
    explorer_prefix="",
    wrapped_native_token=Web3.to_checksum_address("0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"),
    default_buy_token=Web3.to_checksum_address("0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"),  # USDC
)

SEPOLIA = ChainDefinition(
    chain_id=11155111,
    name="sepolia",
    api_network="sepolia",
    explorer_prefix="sepolia",
    wrapped_native_token=Web3.to_checksum_address("0xfff9976782d46cc05630d1f6ebab18b2324d6b14"),
    default_buy_token=Web3.to_checksum_address("0x0625afb445c3b6b7b929342a04a22599fd5dbb59"),  # COW
)

GNOSIS = ChainDefinition(
    chain_id=100,
    name="gnosis",
    api_network="xdai",
    explorer_prefix="gc",
    wrapped_native_token=Web3.to_checksum_address("0xe91d153e0b41518a2ce8dd3d7944fa863463a97d"),  # WXDAI
    default_buy_token=Web3.to_checksum_address("0x177127622c4a00f3d409b75571e12cb3c8973d3c"),  # COW
)

SUPPORTED_CHAINS: dict[str, ChainDefinition] = {
    chain.name: chain for chain in (MAINNET, SEPOLIA, GNOSIS)
}


def get_chain(name: str) -> ChainDefinition:
    """Look up a chain definition by network name.

    Raises:
        ConfigurationError: If the network is not supported
    """
    try:
        return SUPPORTED_CHAINS[name.lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unsupported network: {name}. "
            f"Supported networks: {', '.join(sorted(SUPPORTED_CHAINS))}"
        ) from None
