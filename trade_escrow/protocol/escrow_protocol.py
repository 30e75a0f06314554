"""
Escrow protocol facade.

Orchestrates the codec, settlement arithmetic, state machine, group builder
and box reader into the public trade operations:

    create_trade   buyer lists a trade (optionally opting into the instrument)
    fund_escrow    buyer or financier locks principal plus fee
    execute_trade  seller delivers the instrument and pays the regulator tax
    cancel_trade   buyer asks the contract to expire the trade

Each operation reads the ledger fresh, builds one atomic group, has the
signer sign it, submits it once and waits a bounded number of rounds for
confirmation. Nothing read here is cached between operations.
"""

import asyncio
import base64
from typing import Any, Dict, List, Optional

import structlog

from trade_escrow.codec.binary import (
    ABI_RETURN_PREFIX, decode_abi_return_uint64, validate_address
)
from trade_escrow.core.config import (
    EscrowClientConfig, EscrowContractConfig, client_config
)
from trade_escrow.core.errors import (
    RecipientNotOptedIn, StaleTradeState, TradeNotFound
)
from trade_escrow.core.models import (
    ComplianceDocumentSet, ContractState, CreateTradeRequest,
    ExecuteTradeRequest, ExecutionDocumentSet, SettlementCostBreakdown, Trade,
    TradeEvent, TradeMetadata, TradeResult, TradeState
)
from trade_escrow.ledger.algod_client import AlgodLedgerClient, create_ledger_client
from trade_escrow.ledger.box_reader import BoxReader
from trade_escrow.ledger.group_builder import (
    AtomicGroupBuilder, TransactionGroup, sign_group, validate_create_request,
    validate_execute_request
)
from trade_escrow.ledger.signer import Signer
from trade_escrow.settlement.costs import SettlementRates, calculate_settlement_costs
from trade_escrow.settlement.state_machine import authorize, next_state

logger = structlog.get_logger(__name__)


def _return_value(info: Dict[str, Any]) -> Optional[int]:
    """Decode the uint64 method return value from confirmed transaction logs."""
    for entry in reversed(info.get("logs", [])):
        log = base64.b64decode(entry)
        if log.startswith(ABI_RETURN_PREFIX):
            return decode_abi_return_uint64(log)
    return None


class EscrowProtocol:
    """
    Client for the trade escrow contract.

    Features:
    - Ledger counter read immediately before naming a new trade's boxes
    - Settlement rates taken from the contract when it publishes them
    - Fresh trade read and state-machine check before every transition
    - Single submission per group; confirmation bounded in rounds
    """

    def __init__(
        self,
        ledger: AlgodLedgerClient,
        app_id: int,
        contract: Optional[EscrowContractConfig] = None,
        rates: Optional[SettlementRates] = None,
        builder: Optional[AtomicGroupBuilder] = None,
        reader: Optional[BoxReader] = None,
    ):
        """
        Initialize the protocol client.

        Args:
            ledger: Async algod client
            app_id: Escrow application id
            contract: Confirmation policy and explorer links
            rates: Fallback settlement rates (configured rates by default)
            builder: Group builder (created for app_id if omitted)
            reader: Box reader (created for app_id if omitted)
        """
        self.ledger = ledger
        self.app_id = app_id
        self.contract = contract or client_config.contract
        self.rates = rates or SettlementRates.from_config()
        self.builder = builder or AtomicGroupBuilder(app_id)
        self.reader = reader or BoxReader(ledger, app_id)

        logger.info("escrow_protocol.initialized", app_id=app_id)

    # =========================================================================
    # Internals
    # =========================================================================

    async def _require_trade(self, trade_id: int) -> Trade:
        trade = await self.reader.read_trade(trade_id)
        if trade is None:
            raise TradeNotFound(f"Trade #{trade_id} does not exist")
        return trade

    async def _effective_rates(self, state: Optional[ContractState] = None) -> SettlementRates:
        state = state or await self.reader.read_contract_state()
        return self.rates.with_ledger_overrides(state)

    async def _submit(
        self, group: TransactionGroup, signer: Signer, operation: str
    ) -> Dict[str, Any]:
        """Sign, submit once and wait for the group's application call."""
        signed = await sign_group(group, signer)
        await self.ledger.send_group(signed)
        info = await self.ledger.wait_for_confirmation(
            group.call_tx_id, self.contract.confirmation_rounds
        )
        logger.info(
            f"escrow_protocol.{operation}_confirmed",
            tx_id=group.call_tx_id,
            group_id=group.group_id_b64,
            confirmed_round=info.get("confirmed-round"),
        )
        return info

    def _result(
        self,
        trade_id: int,
        group: TransactionGroup,
        info: Dict[str, Any],
        trade: Optional[Trade],
    ) -> TradeResult:
        return TradeResult(
            trade_id=trade_id,
            tx_id=group.call_tx_id,
            group_id=group.group_id_b64,
            confirmed_round=info.get("confirmed-round", 0),
            explorer_url=self.contract.explorer_url(group.call_tx_id),
            trade=trade,
        )

    # =========================================================================
    # Settlement
    # =========================================================================

    async def settlement_costs(self, principal: int) -> SettlementCostBreakdown:
        """Cost breakdown for a principal at the contract's current rates."""
        return calculate_settlement_costs(principal, await self._effective_rates())

    # =========================================================================
    # Create Trade
    # =========================================================================

    async def create_trade(self, request: CreateTradeRequest, signer: Signer) -> TradeResult:
        """
        Create a trade listing. The buyer is the sender.

        The trade id used for box names comes from the ledger counter read
        just before building. The id the contract returns is authoritative.

        Raises:
            ValidationError: Bad input, before any network call
            SigningIncomplete: Signer did not sign the whole group
            SubmissionError: Ledger rejected the group
            ConfirmationTimeout: Not confirmed within the round budget
        """
        args = validate_create_request(request)
        next_id = await self.reader.get_next_trade_id()
        sp = await self.ledger.suggested_params()
        group = self.builder.build_create_trade(request, next_id, sp, encoded_args=args)

        logger.info(
            "escrow_protocol.creating_trade",
            expected_trade_id=next_id,
            buyer=request.buyer,
            seller=request.seller,
            amount=request.amount,
            with_opt_in=len(group) == 2,
            box_mbr_estimate=group.box_mbr_estimate,
        )

        info = await self._submit(group, signer, "create_trade")

        trade_id = _return_value(info)
        if trade_id is None:
            trade_id = next_id
        elif trade_id != next_id:
            logger.warning(
                "escrow_protocol.trade_id_mismatch",
                expected=next_id,
                returned=trade_id,
            )

        trade = await self.reader.read_trade(trade_id)
        logger.info("escrow_protocol.trade_created", trade_id=trade_id, tx_id=group.call_tx_id)
        return self._result(trade_id, group, info, trade)

    # =========================================================================
    # Fund Escrow
    # =========================================================================

    async def fund_escrow(self, trade_id: int, funder: str, signer: Signer) -> TradeResult:
        """
        Lock principal plus marketplace fee in the contract.

        Args:
            trade_id: Trade in CREATED state
            funder: Buyer, or a third-party financier
            signer: Signs for the funder

        Raises:
            TradeNotFound: No such trade
            InvalidTransition: Trade is not CREATED
            UnauthorizedInitiator: Funder is the seller
        """
        funder = validate_address(funder)
        trade = await self._require_trade(trade_id)
        authorize(trade, TradeEvent.FUND_ESCROW, funder)

        state = await self.reader.read_contract_state()
        costs = calculate_settlement_costs(trade.amount, await self._effective_rates(state))
        sp = await self.ledger.suggested_params()
        group = self.builder.build_fund_escrow(
            trade, funder, costs.escrow_required, sp, state.settlement_currency
        )

        info = await self._submit(group, signer, "fund_escrow")
        funded = await self.reader.read_trade(trade_id)
        logger.info(
            "escrow_protocol.escrow_funded",
            trade_id=trade_id,
            funder=funder,
            escrow_required=costs.escrow_required,
        )
        return self._result(trade_id, group, info, funded)

    # =========================================================================
    # Execute Trade
    # =========================================================================

    async def execute_trade(
        self,
        request: ExecuteTradeRequest,
        signer: Signer,
        expected_state: Optional[TradeState] = TradeState.ESCROWED,
    ) -> TradeResult:
        """
        Deliver the instrument, pay the regulator tax and release escrow.

        The trade is re-read immediately before the group is built. If the
        fresh state differs from expected_state (the caller's cached view)
        the operation aborts without building anything.

        Raises:
            ValidationError: Bad address or oversized arguments, before any
                network call
            TradeNotFound: No such trade
            StaleTradeState: Fresh read contradicts expected_state
            InvalidTransition: Trade is not ESCROWED
            UnauthorizedInitiator: Sender is not the trade's seller
            RecipientNotOptedIn: Funding party cannot receive the instrument
        """
        args = validate_execute_request(request)
        trade = await self._require_trade(request.trade_id)
        if expected_state is not None and trade.state != expected_state:
            logger.warning(
                "escrow_protocol.stale_trade_state",
                trade_id=request.trade_id,
                expected=TradeState(expected_state).name,
                actual=trade.state.name,
            )
            raise StaleTradeState(
                f"Trade #{request.trade_id} is {trade.state.name}, "
                f"expected {TradeState(expected_state).name}"
            )
        authorize(trade, TradeEvent.EXECUTE_TRADE, request.seller)

        recipient = trade.instrument_recipient
        if not await self.ledger.is_opted_in(recipient, request.instrument_asset_id):
            raise RecipientNotOptedIn(
                f"{recipient} has not opted into instrument asset {request.instrument_asset_id}"
            )

        state = await self.reader.read_contract_state()
        costs = calculate_settlement_costs(trade.amount, await self._effective_rates(state))
        sp = await self.ledger.suggested_params()
        group = self.builder.build_execute_trade(
            trade,
            request,
            costs.regulator_tax,
            sp,
            settlement_currency=state.settlement_currency,
            platform_treasury=state.platform_treasury,
            encoded_args=args,
        )

        info = await self._submit(group, signer, "execute_trade")
        executed = await self.reader.read_trade(request.trade_id)
        logger.info(
            "escrow_protocol.trade_executed",
            trade_id=request.trade_id,
            recipient=recipient,
            regulator_tax=costs.regulator_tax,
        )
        return self._result(request.trade_id, group, info, executed)

    # =========================================================================
    # Cancel Trade
    # =========================================================================

    async def cancel_trade(self, trade_id: int, sender: str, signer: Signer) -> TradeResult:
        """
        Ask the contract to expire a CREATED or ESCROWED trade.

        An escrowed trade is refunded to its escrow provider. The contract
        may still reject the caller; that rejection is final.
        """
        sender = validate_address(sender)
        trade = await self._require_trade(trade_id)
        authorize(trade, TradeEvent.CANCEL, sender)

        state = await self.reader.read_contract_state()
        sp = await self.ledger.suggested_params()
        group = self.builder.build_cancel_trade(trade, sender, sp, state.settlement_currency)

        info = await self._submit(group, signer, "cancel_trade")
        cancelled = await self.reader.read_trade(trade_id)
        logger.info("escrow_protocol.trade_cancelled", trade_id=trade_id, sender=sender)
        return self._result(trade_id, group, info, cancelled)

    # =========================================================================
    # Read Accessors
    # =========================================================================

    async def get_trade(self, trade_id: int) -> Optional[Trade]:
        return await self.reader.read_trade(trade_id)

    async def get_metadata(self, trade_id: int) -> Optional[TradeMetadata]:
        return await self.reader.read_metadata(trade_id)

    async def get_creation_documents(self, trade_id: int) -> Optional[ComplianceDocumentSet]:
        return await self.reader.read_creation_documents(trade_id)

    async def get_execution_documents(self, trade_id: int) -> Optional[ExecutionDocumentSet]:
        return await self.reader.read_execution_documents(trade_id)

    async def get_buyer_trades(self, address: str) -> List[int]:
        return await self.reader.read_buyer_trades(address)

    async def get_seller_trades(self, address: str) -> List[int]:
        return await self.reader.read_seller_trades(address)

    async def get_contract_state(self) -> ContractState:
        return await self.reader.read_contract_state()

    async def list_trades(
        self,
        state: Optional[TradeState] = None,
        buyer: Optional[str] = None,
        seller: Optional[str] = None,
    ) -> List[Trade]:
        """
        Scan every trade id the contract has assigned.

        Ids with no box (never created, or removed) are skipped.
        """
        next_id = await self.reader.get_next_trade_id()
        trades = await asyncio.gather(
            *(self.reader.read_trade(trade_id) for trade_id in range(1, next_id))
        )

        result = []
        for trade in trades:
            if trade is None:
                continue
            if state is not None and trade.state != state:
                continue
            if buyer is not None and trade.buyer != buyer:
                continue
            if seller is not None and trade.seller != seller:
                continue
            result.append(trade)
        return result

    def next_state(self, trade: Trade, event: TradeEvent) -> TradeState:
        """State a trade would move to, without touching the ledger."""
        return next_state(trade.state, event)

    async def close(self):
        await self.ledger.close()


def create_escrow_protocol(
    config: Optional[EscrowClientConfig] = None
) -> EscrowProtocol:
    """
    Factory function to build a protocol client from configuration.

    Args:
        config: Client configuration (default from environment)

    Returns:
        EscrowProtocol instance
    """
    config = config or client_config
    ledger = create_ledger_client(config.algod)
    return EscrowProtocol(
        ledger,
        config.contract.app_id,
        contract=config.contract,
        rates=SettlementRates.from_config(config.rates),
        builder=AtomicGroupBuilder(config.contract.app_id, config.fees),
    )
