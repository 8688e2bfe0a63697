"""GPv2Settlement calls used by the presign flow."""

from web3 import Web3

from .models import ChainTransactionRequest, OperationType
from .utils.chain_connector import load_contract_abi

ORDER_UID_LENGTH = 56  # order digest (32) + owner (20) + validTo (4)


def order_uid_bytes(order_uid: str) -> bytes:
    """Decode an order uid, checking its length."""
    raw = Web3.to_bytes(hexstr=order_uid)
    if len(raw) != ORDER_UID_LENGTH:
        raise ValueError(
            f"Order uid must be {ORDER_UID_LENGTH} bytes, got {len(raw)}"
        )
    return raw


def encode_set_pre_signature(order_uid: str, signed: bool = True) -> str:
    """Calldata for ``setPreSignature(orderUid, signed)``.

    Must be sent by the order owner; for a Safe this means executing it
    through the Safe itself.
    """
    contract = Web3().eth.contract(abi=list(load_contract_abi("GPv2Settlement")))
    return contract.encode_abi("setPreSignature", args=[order_uid_bytes(order_uid), signed])


def presign_request(settlement: str, order_uid: str, signed: bool = True) -> ChainTransactionRequest:
    """Safe transaction that presigns (or revokes) an order."""
    return ChainTransactionRequest(
        to=settlement,
        value=0,
        data=encode_set_pre_signature(order_uid, signed),
        operation=OperationType.CALL,
    )
