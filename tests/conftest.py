"""Pytest fixtures and utilities for the trade escrow test suite."""
import base64
from types import SimpleNamespace
from typing import Dict, List, Optional, Set, Tuple
from unittest.mock import MagicMock

import msgpack
import pytest
from algosdk import account, encoding, logic, transaction
from algosdk.error import AlgodHTTPError

from trade_escrow.codec.binary import (
    ABI_RETURN_PREFIX, ZERO_ADDRESS, decode_address, decode_string,
    decode_uint64, encode_uint64, encode_uint64_array, method_selector
)
from trade_escrow.codec.boxes import (
    buyer_index_box_name, creation_documents_box_name,
    execution_documents_box_name, metadata_box_name, seller_index_box_name,
    trade_box_name
)
from trade_escrow.codec.records import (
    decode_trade, decode_trade_index, encode_creation_documents,
    encode_execution_documents, encode_metadata, encode_trade
)
from trade_escrow.core.config import EscrowContractConfig, TransactionFeeConfig
from trade_escrow.core.models import (
    ComplianceDocumentSet, CreateTradeRequest, ExecuteTradeRequest,
    ExecutionDocumentSet, InstrumentType, Trade, TradeMetadata, TradeState
)
from trade_escrow.ledger.algod_client import AlgodLedgerClient
from trade_escrow.ledger.group_builder import (
    CREATE_TRADE, ESCROW_TRADE, ESCROW_TRADE_AS_FINANCIER, EXECUTE_TRADE,
    EXPIRE_TRADE
)
from trade_escrow.ledger.signer import KeySigner
from trade_escrow.protocol.escrow_protocol import EscrowProtocol
from trade_escrow.settlement.costs import SettlementRates

APP_ID = 746_221_005
INSTRUMENT_ASSET_ID = 745_000_111
GENESIS_HASH = "SGO1GKSzyE7IEPItTxCByw9x8FmnrCDexi9/cOUJOiI="
CREATED_AT = 1_735_000_000


def make_suggested_params() -> transaction.SuggestedParams:
    return transaction.SuggestedParams(
        fee=0,
        first=40_000_000,
        last=40_001_000,
        gh=GENESIS_HASH,
        gen="testnet-v1.0",
        flat_fee=False,
        min_fee=1000,
    )


# =============================================================================
# In-Memory Algod
# =============================================================================

class FakeAlgod:
    """
    In-memory stand-in for algod.AlgodClient.

    Implements the calls AlgodLedgerClient makes, and applies the escrow
    contract's create/escrow/execute/expire effects to an in-memory box map
    so protocol round-trips can be exercised without a network.

    Attributes:
        boxes: Box name -> raw value
        global_state: Global state key -> int or bytes
        opted_in: (address, asset id) pairs that can receive the asset
        submitted: Decoded signed transaction groups, in submission order
        reject_with: If set, the next submission fails with this message
        confirm: If False, submissions stay pending forever
        calls: Names of the algod methods called, in order
    """

    def __init__(self, app_id: int = APP_ID, treasury: Optional[str] = None):
        self.app_id = app_id
        self.boxes: Dict[bytes, bytes] = {}
        self.global_state: Dict[str, object] = {
            "marketplaceFeeRate": 25,
            "regulatorTaxRate": 500,
            "regulatorRefundRate": 200,
            "settlementCurrency": 0,
        }
        if treasury:
            self.global_state["platformTreasury"] = encoding.decode_address(treasury)
        self.opted_in: Set[Tuple[str, int]] = set()
        self.submitted: List[List[transaction.SignedTransaction]] = []
        self.pending: Dict[str, dict] = {}
        self.reject_with: Optional[str] = None
        self.confirm = True
        self.round = 40_000_000
        self.calls: List[str] = []

    # --- algod API --------------------------------------------------------

    def suggested_params(self):
        self.calls.append("suggested_params")
        return make_suggested_params()

    def status(self):
        self.calls.append("status")
        return {"last-round": self.round}

    def status_after_block(self, block_num):
        self.calls.append("status_after_block")
        self.round = max(self.round, block_num)
        return self.status()

    def pending_transaction_info(self, tx_id):
        self.calls.append("pending_transaction_info")
        if not self.confirm:
            return {"confirmed-round": 0, "pool-error": ""}
        return self.pending.get(tx_id, {"confirmed-round": 0, "pool-error": ""})

    def application_box_by_name(self, application_id, box_name):
        self.calls.append("application_box_by_name")
        value = self.boxes.get(bytes(box_name))
        if application_id != self.app_id or value is None:
            raise AlgodHTTPError("box not found", 404)
        return {
            "name": base64.b64encode(box_name).decode(),
            "round": self.round,
            "value": base64.b64encode(value).decode(),
        }

    def application_info(self, application_id):
        self.calls.append("application_info")
        entries = []
        for key, value in self.global_state.items():
            if isinstance(value, int):
                encoded = {"type": 2, "uint": value, "bytes": ""}
            else:
                encoded = {"type": 1, "uint": 0, "bytes": base64.b64encode(value).decode()}
            entries.append({"key": base64.b64encode(key.encode()).decode(), "value": encoded})
        return {"id": application_id, "params": {"global-state": entries}}

    def account_asset_info(self, address, asset_id):
        self.calls.append("account_asset_info")
        if (address, asset_id) not in self.opted_in:
            raise AlgodHTTPError("account asset info not found", 404)
        return {"asset-holding": {"asset-id": asset_id, "amount": 0, "is-frozen": False}}

    def send_raw_transaction(self, txn):
        self.calls.append("send_raw_transaction")
        unpacker = msgpack.Unpacker(raw=False)
        unpacker.feed(base64.b64decode(txn))
        group = [encoding.msgpack_decode(item) for item in unpacker]
        self.submitted.append(group)

        if self.reject_with:
            message, self.reject_with = self.reject_with, None
            raise AlgodHTTPError(message, 400)

        logs = self._apply(group)
        self.round += 1
        for stxn in group:
            self.pending[stxn.transaction.get_txid()] = {
                "confirmed-round": self.round,
                "pool-error": "",
                "logs": [base64.b64encode(log).decode() for log in logs],
            }
        return group[0].transaction.get_txid()

    # --- contract simulation ---------------------------------------------

    def _reject(self, reason: str):
        raise AlgodHTTPError(
            f"TransactionPool.Remember: transaction rejected: logic eval error: {reason}", 400
        )

    def _trade(self, trade_id: int) -> Trade:
        raw = self.boxes.get(trade_box_name(trade_id))
        if raw is None:
            self._reject(f"box not found for trade {trade_id}")
        return decode_trade(raw)

    def _append_index(self, name: bytes, trade_id: int):
        ids = decode_trade_index(self.boxes[name]) if name in self.boxes else []
        self.boxes[name] = encode_uint64_array(ids + [trade_id])

    def _apply(self, group) -> List[bytes]:
        logs: List[bytes] = []
        for stxn in group:
            txn = stxn.transaction
            if isinstance(txn, transaction.AssetTransferTxn) and txn.amount == 0 \
                    and txn.receiver == txn.sender:
                self.opted_in.add((txn.sender, txn.index))
            if not isinstance(txn, transaction.ApplicationCallTxn):
                continue
            declared = {box.name for box in (txn.boxes or [])}
            selector, args = txn.app_args[0], txn.app_args[1:]
            if selector == method_selector(CREATE_TRADE):
                logs.append(self._create_trade(txn, args, declared))
            elif selector in (method_selector(ESCROW_TRADE), method_selector(ESCROW_TRADE_AS_FINANCIER)):
                self._escrow(txn, args, group)
            elif selector == method_selector(EXECUTE_TRADE):
                self._execute(txn, args, group)
            elif selector == method_selector(EXPIRE_TRADE):
                self._expire(txn, args)
            else:
                self._reject("unknown method")
        return logs

    def _create_trade(self, txn, args, declared) -> bytes:
        trade_id = self.global_state.get("nextTradeId") or 1
        seller = decode_address(args[0])
        if seller == txn.sender:
            self._reject("assert failed: Cannot trade with yourself")
        names = [
            trade_box_name(trade_id), metadata_box_name(trade_id),
            creation_documents_box_name(trade_id),
            buyer_index_box_name(txn.sender), seller_index_box_name(seller),
        ]
        missing = [name for name in names if name not in declared]
        if missing:
            raise AlgodHTTPError(f"invalid Box reference {missing[0].hex()}", 400)

        strings = [decode_string(arg)[0] for arg in args[2:]]
        self.boxes[names[0]] = encode_trade(Trade(
            trade_id=trade_id,
            buyer=txn.sender,
            seller=seller,
            escrow_provider=ZERO_ADDRESS,
            amount=decode_uint64(args[1]),
            state=TradeState.CREATED,
            created_at=CREATED_AT,
        ))
        self.boxes[names[1]] = encode_metadata(TradeMetadata(
            product_type=strings[0], description=strings[1], ipfs_hash=strings[2],
        ))
        self.boxes[names[2]] = encode_creation_documents(ComplianceDocumentSet(
            buyer_lei=strings[3], buyer_lei_ipfs=strings[4],
            seller_lei=strings[5], seller_lei_ipfs=strings[6],
            purchase_order_vlei=strings[7], purchase_order_vlei_ipfs=strings[8],
            created_at=CREATED_AT, created_by=txn.sender,
        ))
        self._append_index(names[3], trade_id)
        self._append_index(names[4], trade_id)
        self.global_state["nextTradeId"] = trade_id + 1
        return ABI_RETURN_PREFIX + encode_uint64(trade_id)

    def _escrow(self, txn, args, group):
        trade = self._trade(decode_uint64(args[0]))
        if trade.state != TradeState.CREATED:
            self._reject("assert failed: Trade not in CREATED state")
        fee = trade.amount * self.global_state["marketplaceFeeRate"] // 10_000
        payment = group[0].transaction
        if payment.amt != trade.amount + fee:
            self._reject("assert failed: Wrong amount")
        self.boxes[trade_box_name(trade.trade_id)] = encode_trade(trade.model_copy(update={
            "state": TradeState.ESCROWED,
            "escrow_provider": txn.sender,
            "marketplace_fee": fee,
        }))

    def _execute(self, txn, args, group):
        trade = self._trade(decode_uint64(args[0]))
        if trade.state != TradeState.ESCROWED:
            self._reject("assert failed: Trade not escrowed")
        if txn.sender != trade.seller:
            self._reject("assert failed: Only seller can execute")
        instrument, tax = group[0].transaction, group[1].transaction
        if (instrument.receiver, instrument.index) not in self.opted_in:
            raise AlgodHTTPError(
                f"asset {instrument.index} missing from {instrument.receiver}", 400
            )
        amount = trade.amount
        if tax.amt != amount * self.global_state["regulatorTaxRate"] // 10_000:
            self._reject("assert failed: Wrong amount")
        regulator = decode_address(args[6])
        docs = [decode_string(arg)[0] for arg in args[7:]]
        self.boxes[trade_box_name(trade.trade_id)] = encode_trade(trade.model_copy(update={
            "state": TradeState.COMPLETED,
            "instrument_asset_id": decode_uint64(args[1]),
            "instrument_type": InstrumentType(decode_uint64(args[2])),
            "instrument_value": amount,
            "regulator_wallet": regulator,
            "regulator_tax_paid": tax.amt,
            "regulator_refund_due": amount * self.global_state["regulatorRefundRate"] // 10_000,
        }))
        self.boxes[execution_documents_box_name(trade.trade_id)] = encode_execution_documents(
            ExecutionDocumentSet(
                shipping_instruction_vlei=docs[0], shipping_instruction_vlei_ipfs=docs[1],
                commercial_invoice_vlei=docs[2], commercial_invoice_vlei_ipfs=docs[3],
                instrument_lei=docs[4], instrument_lei_ipfs=docs[5],
                shipping_instruction_id=docs[6], commercial_invoice_id=docs[7],
                executed_at=CREATED_AT + 86_400, executed_by=txn.sender,
            )
        )

    def _expire(self, txn, args):
        trade = self._trade(decode_uint64(args[0]))
        if trade.state not in (TradeState.CREATED, TradeState.ESCROWED):
            self._reject("assert failed: Cannot expire trade in current state")
        self.boxes[trade_box_name(trade.trade_id)] = encode_trade(
            trade.model_copy(update={"state": TradeState.CANCELLED})
        )


# =============================================================================
# Account Fixtures
# =============================================================================

def _new_account() -> SimpleNamespace:
    private_key, address = account.generate_account()
    return SimpleNamespace(private_key=private_key, address=address)


@pytest.fixture
def accounts():
    """Buyer, seller, financier, regulator and treasury accounts."""
    return SimpleNamespace(
        buyer=_new_account(),
        seller=_new_account(),
        financier=_new_account(),
        regulator=_new_account(),
        treasury=_new_account(),
    )


@pytest.fixture
def signer(accounts):
    """Signer holding every test account's key."""
    return KeySigner([
        accounts.buyer.private_key,
        accounts.seller.private_key,
        accounts.financier.private_key,
    ])


@pytest.fixture
def suggested_params():
    return make_suggested_params()


# =============================================================================
# Ledger Fixtures
# =============================================================================

@pytest.fixture
def fake_algod(accounts):
    """In-memory algod with the escrow application deployed."""
    return FakeAlgod(APP_ID, treasury=accounts.treasury.address)


@pytest.fixture
def ledger(fake_algod):
    """Ledger client backed by the in-memory algod."""
    client = AlgodLedgerClient(fake_algod, max_workers=2)
    yield client
    client._executor.shutdown(wait=True)


@pytest.fixture
def mock_algod():
    """Bare MagicMock algod for error-path tests."""
    return MagicMock()


@pytest.fixture
def contract_config():
    return EscrowContractConfig(
        app_id=APP_ID,
        confirmation_rounds=4,
        explorer_tx_url="https://explorer.test/tx/{tx_id}",
    )


@pytest.fixture
def fee_schedule():
    return TransactionFeeConfig(
        base_fee=1000,
        create_trade_min_fee=10000,
        execute_trade_fee=3000,
        cancel_trade_fee=2000,
    )


@pytest.fixture
def protocol(ledger, contract_config):
    """Protocol client wired to the in-memory ledger."""
    return EscrowProtocol(
        ledger,
        APP_ID,
        contract=contract_config,
        rates=SettlementRates(),
    )


@pytest.fixture
def app_id():
    return APP_ID


@pytest.fixture
def instrument_id():
    return INSTRUMENT_ASSET_ID


@pytest.fixture
def app_address():
    return logic.get_application_address(APP_ID)


# =============================================================================
# Model Fixtures
# =============================================================================

@pytest.fixture
def sample_trade(accounts):
    """A self-funded trade in ESCROWED state."""
    return Trade(
        trade_id=42,
        buyer=accounts.buyer.address,
        seller=accounts.seller.address,
        escrow_provider=accounts.buyer.address,
        amount=1_000_000,
        state=TradeState.ESCROWED,
        created_at=CREATED_AT,
        marketplace_fee=2_500,
    )


@pytest.fixture
def create_request(accounts):
    return CreateTradeRequest(
        buyer=accounts.buyer.address,
        seller=accounts.seller.address,
        amount=1_000_000,
        product_type="Coffee Beans",
        description="20 tonnes arabica, FOB Santos",
        ipfs_hash="bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi",
        documents=ComplianceDocumentSet(
            buyer_lei="5493001KJTIIGC8Y1R12",
            buyer_lei_ipfs="bafkreibuyerlei",
            purchase_order_vlei="PO-2024-0117",
        ),
    )


@pytest.fixture
def execute_request(accounts):
    def build(trade_id: int) -> ExecuteTradeRequest:
        return ExecuteTradeRequest(
            trade_id=trade_id,
            seller=accounts.seller.address,
            instrument_asset_id=INSTRUMENT_ASSET_ID,
            regulator=accounts.regulator.address,
            instrument_type=InstrumentType.BILL_OF_LADING,
            lei_id="5493001KJTIIGC8Y1R12",
            lei_name="Santos Export Ltda",
            instrument_number="BL-778812",
            documents=ExecutionDocumentSet(
                shipping_instruction_vlei="SI-3391",
                commercial_invoice_vlei="INV-5521",
                shipping_instruction_id="SI-3391",
                commercial_invoice_id="INV-5521",
            ),
        )
    return build
