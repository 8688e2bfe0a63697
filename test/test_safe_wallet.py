#!/usr/bin/env python3
"""Tests for SafeWallet batching and execution.

Batches are checked both at the encoding level and by running them on the
in-memory chain in ``fake_chain``, which applies a Safe transaction
all-or-nothing.
"""

import dataclasses
import logging
from unittest.mock import MagicMock

import pytest
from eth_account import Account
from hexbytes import HexBytes
from requests.exceptions import ConnectionError as RequestsConnectionError
from web3 import Web3
from web3.exceptions import ContractLogicError

from safe_cow_swap.chains import GNOSIS, MAINNET
from safe_cow_swap.exceptions import BatchError, PreconditionError, TransactionSubmissionError
from safe_cow_swap.models import ZERO_ADDRESS, ChainTransactionRequest, OperationType
from safe_cow_swap.safe_wallet import SafeWallet, decode_multisend, encode_multisend
from safe_cow_swap.settlement import presign_request
from safe_cow_swap.token_operations import TokenOperations

from conftest import ORDER_UID, OTHER_ADDRESS, SAFE_ADDRESS, TEST_PRIVATE_KEY
from fake_chain import APPROVE, DEPOSIT, FakeChain

AMOUNT = 20_000_000_000_000_000


@pytest.fixture
def mock_connector():
    """Connector double with a real signer account."""
    connector = MagicMock()
    connector.chain = MAINNET
    connector.account = Account.from_key(TEST_PRIVATE_KEY)
    connector.signer_address = connector.account.address
    return connector


@pytest.fixture
def wallet(mock_connector):
    return SafeWallet(mock_connector, SAFE_ADDRESS)


@pytest.fixture
def tokens():
    return TokenOperations(MAINNET.wrapped_native_token)


class TestMultiSendEncoding:
    """Tests for the MultiSend packed encoding."""

    def test_packed_layout(self):
        """Test operation | to | value | length | data layout of one entry."""
        tx = ChainTransactionRequest(to=OTHER_ADDRESS, value=5, data="0xdeadbeef")

        packed = encode_multisend([tx])

        assert len(packed) == 1 + 20 + 32 + 32 + 4
        assert packed[0] == 0
        assert packed[1:21] == bytes.fromhex(OTHER_ADDRESS[2:])
        assert int.from_bytes(packed[21:53], "big") == 5
        assert int.from_bytes(packed[53:85], "big") == 4
        assert packed[85:] == bytes.fromhex("deadbeef")

    def test_decode_preserves_order(self, tokens):
        requests = tokens.fund_and_authorize(MAINNET.vault_relayer, AMOUNT)

        assert decode_multisend(encode_multisend(requests)) == requests

    def test_decode_truncated(self):
        packed = encode_multisend([ChainTransactionRequest(to=OTHER_ADDRESS, data="0xdeadbeef")])

        with pytest.raises(ValueError, match="Truncated"):
            decode_multisend(packed[:-1])


class TestCreateBatch:
    """Tests for SafeWallet.create_batch."""

    def test_empty_batch(self, wallet):
        with pytest.raises(BatchError, match="empty batch"):
            wallet.create_batch([])

    def test_single_request_goes_direct(self, wallet):
        """Test that a one-call batch targets the call directly."""
        request = presign_request(MAINNET.settlement, ORDER_UID)

        batch = wallet.create_batch([request])

        assert len(batch) == 1
        assert not batch.is_multi_send
        assert batch.to == MAINNET.settlement
        assert batch.data == request.data
        assert batch.operation is OperationType.CALL

    def test_multiple_requests_use_call_only(self, wallet, tokens):
        """Test that a multi-call batch delegate-calls MultiSendCallOnly in order."""
        requests = tokens.fund_and_authorize(MAINNET.vault_relayer, AMOUNT)

        batch = wallet.create_batch(requests, calls_only=True)

        assert batch.is_multi_send
        assert batch.to == MAINNET.multi_send_call_only
        assert batch.operation is OperationType.DELEGATE_CALL
        assert batch.value == 0
        assert list(batch.transactions) == requests

    def test_multiple_requests_without_call_only(self, wallet, tokens):
        batch = wallet.create_batch(tokens.fund_and_authorize(MAINNET.vault_relayer, AMOUNT), calls_only=False)

        assert batch.to == MAINNET.multi_send

    def test_calls_only_rejects_delegate_calls(self, wallet, tokens):
        """Test that calls_only refuses a batch containing a delegate call."""
        delegate = ChainTransactionRequest(
            to=OTHER_ADDRESS, data="0x", operation=OperationType.DELEGATE_CALL
        )

        with pytest.raises(BatchError, match="delegate calls"):
            wallet.create_batch([tokens.wrap_request(AMOUNT), delegate], calls_only=True)

    def test_missing_multi_send(self, mock_connector, tokens):
        mock_connector.chain = dataclasses.replace(GNOSIS, multi_send=None)
        wallet = SafeWallet(mock_connector, SAFE_ADDRESS)

        with pytest.raises(BatchError, match="No MultiSend contract"):
            wallet.create_batch(
                tokens.fund_and_authorize(MAINNET.vault_relayer, AMOUNT), calls_only=False
            )


class TestBatchExecution:
    """Runs batches on the in-memory chain."""

    def test_wrap_and_approve_applied_in_order(self, wallet, tokens):
        chain = FakeChain(MAINNET, SAFE_ADDRESS, native_balance=AMOUNT * 2)
        batch = wallet.create_batch(tokens.fund_and_authorize(MAINNET.vault_relayer, AMOUNT))

        tx_hash = chain.execute(batch)

        assert chain.receipts[tx_hash]["status"] == 1
        assert chain.token_balance(SAFE_ADDRESS) == AMOUNT
        assert chain.allowance(SAFE_ADDRESS, MAINNET.vault_relayer) == AMOUNT
        assert chain.state.native[SAFE_ADDRESS] == AMOUNT

    def test_batch_is_atomic(self, wallet, tokens):
        """Test that a failing second call leaves no trace of the first."""
        chain = FakeChain(MAINNET, SAFE_ADDRESS, native_balance=AMOUNT * 2)
        chain.reverting_selectors.add(APPROVE)
        batch = wallet.create_batch(tokens.fund_and_authorize(MAINNET.vault_relayer, AMOUNT))

        tx_hash = chain.execute(batch)

        assert chain.receipts[tx_hash]["status"] == 0
        assert chain.token_balance(SAFE_ADDRESS) == 0
        assert chain.allowance(SAFE_ADDRESS, MAINNET.vault_relayer) == 0
        assert chain.state.native[SAFE_ADDRESS] == AMOUNT * 2

    def test_insufficient_native_balance_reverts_batch(self, wallet, tokens):
        chain = FakeChain(MAINNET, SAFE_ADDRESS, native_balance=AMOUNT - 1)
        batch = wallet.create_batch(tokens.fund_and_authorize(MAINNET.vault_relayer, AMOUNT))

        tx_hash = chain.execute(batch)

        assert chain.receipts[tx_hash]["status"] == 0
        assert chain.allowance(SAFE_ADDRESS, MAINNET.vault_relayer) == 0

    def test_approve_sets_absolute_allowance(self, wallet, tokens):
        """Test that a second approve replaces the allowance instead of adding to it."""
        chain = FakeChain(MAINNET, SAFE_ADDRESS, native_balance=AMOUNT * 2)
        chain.execute(wallet.create_batch([tokens.approve_request(MAINNET.vault_relayer, 5)]))

        chain.execute(wallet.create_batch(tokens.fund_and_authorize(MAINNET.vault_relayer, AMOUNT)))

        assert chain.allowance(SAFE_ADDRESS, MAINNET.vault_relayer) == AMOUNT

    def test_wrap_only_batch(self, wallet, tokens):
        chain = FakeChain(MAINNET, SAFE_ADDRESS, native_balance=AMOUNT)
        batch = wallet.create_batch([tokens.wrap_request(AMOUNT)])

        chain.execute(batch)

        assert batch.data == DEPOSIT
        assert chain.token_balance(SAFE_ADDRESS) == AMOUNT


class TestSafeWallet:
    """Tests for SafeWallet checks and execTransaction submission."""

    def test_is_deployed(self, wallet, mock_connector):
        mock_connector.read.eth.get_code.return_value = HexBytes("0x6080")

        assert wallet.is_deployed() is True
        mock_connector.read.eth.get_code.assert_called_once_with(SAFE_ADDRESS)

    def test_is_not_deployed(self, wallet, mock_connector):
        mock_connector.read.eth.get_code.return_value = HexBytes("0x")

        assert wallet.is_deployed() is False

    def test_verify_signer(self, wallet):
        wallet.contract.functions.isOwner.return_value.call.return_value = True
        wallet.contract.functions.getThreshold.return_value.call.return_value = 1

        wallet.verify_signer()

    def test_verify_signer_not_owner(self, wallet):
        wallet.contract.functions.isOwner.return_value.call.return_value = False

        with pytest.raises(PreconditionError, match="not an owner"):
            wallet.verify_signer()

    def test_verify_signer_threshold(self, wallet):
        wallet.contract.functions.isOwner.return_value.call.return_value = True
        wallet.contract.functions.getThreshold.return_value.call.return_value = 2

        with pytest.raises(PreconditionError, match="needs 2 signatures"):
            wallet.verify_signer()

    def test_execute_signs_safe_transaction_hash(self, wallet, tokens, mock_connector, caplog):
        """Test that execTransaction carries the owner's signature of the Safe tx hash."""
        safe_tx_hash = b"\x11" * 32
        functions = wallet.contract.functions
        functions.nonce.return_value.call.return_value = 7
        functions.getTransactionHash.return_value.call.return_value = safe_tx_hash
        wallet.write_contract.functions.execTransaction.return_value.transact.return_value = HexBytes(
            "0x" + "cd" * 32
        )
        batch = wallet.create_batch(tokens.fund_and_authorize(MAINNET.vault_relayer, AMOUNT))

        with caplog.at_level(logging.INFO):
            tx_hash = wallet.execute(batch)

        assert tx_hash == "0x" + "cd" * 32
        functions.getTransactionHash.assert_called_once_with(
            MAINNET.multi_send_call_only, 0, HexBytes(batch.data), 1, 0, 0, 0, ZERO_ADDRESS, ZERO_ADDRESS, 7
        )
        expected_signature = bytes(mock_connector.account.unsafe_sign_hash(safe_tx_hash).signature)
        args = wallet.write_contract.functions.execTransaction.call_args.args
        assert args[:9] == (
            MAINNET.multi_send_call_only, 0, HexBytes(batch.data), 1, 0, 0, 0, ZERO_ADDRESS, ZERO_ADDRESS
        )
        assert args[9] == expected_signature
        assert len(expected_signature) == 65
        assert "2 call(s) via MultiSend" in caplog.text

    def test_execute_rejected(self, wallet, tokens):
        """Test that a node rejection becomes a TransactionSubmissionError."""
        wallet.contract.functions.nonce.return_value.call.return_value = 0
        wallet.contract.functions.getTransactionHash.return_value.call.return_value = b"\x22" * 32
        wallet.write_contract.functions.execTransaction.return_value.transact.side_effect = (
            ContractLogicError("execution reverted: GS013")
        )

        with pytest.raises(TransactionSubmissionError, match="GS013"):
            wallet.execute(wallet.create_batch([tokens.wrap_request(AMOUNT)]))

    def test_execute_node_unreachable(self, wallet, tokens):
        """Test that a dropped RPC connection during submission is a TransactionSubmissionError."""
        wallet.contract.functions.nonce.return_value.call.return_value = 0
        wallet.contract.functions.getTransactionHash.return_value.call.return_value = b"\x22" * 32
        wallet.write_contract.functions.execTransaction.return_value.transact.side_effect = (
            RequestsConnectionError("node down")
        )

        with pytest.raises(TransactionSubmissionError, match="broadcast state unknown") as exc_info:
            wallet.execute(wallet.create_batch([tokens.wrap_request(AMOUNT)]))

        assert isinstance(exc_info.value.__cause__, RequestsConnectionError)

    def test_execute_without_signer(self, wallet, tokens, mock_connector):
        mock_connector.account = None
        wallet.contract.functions.getTransactionHash.return_value.call.return_value = b"\x22" * 32

        with pytest.raises(PreconditionError, match="No signer"):
            wallet.execute(wallet.create_batch([tokens.wrap_request(AMOUNT)]))
        wallet.write_contract.functions.execTransaction.assert_not_called()


def test_safe_address_checksummed(mock_connector):
    wallet = SafeWallet(mock_connector, SAFE_ADDRESS.lower())

    assert wallet.safe_address == Web3.to_checksum_address(SAFE_ADDRESS)
