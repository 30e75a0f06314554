"""
Trade Escrow - Command Line Entry Point

Read-only inspection of a deployed trade escrow contract.

Usage:
    # Check configuration
    python main.py --check

    # Show settlement costs for a principal (in settlement units)
    python main.py --costs 1000000

    # Show one trade with its metadata and documents
    python main.py --trade 42

    # List trades, optionally by state
    python main.py --list --state escrowed

    # Show contract global state
    python main.py --state-info
"""

import argparse
import asyncio
from typing import Optional

import structlog

from trade_escrow.core.config import client_config
from trade_escrow.core.errors import EscrowProtocolError
from trade_escrow.core.models import ContractState, SettlementCostBreakdown, Trade, TradeState
from trade_escrow.protocol.escrow_protocol import EscrowProtocol, create_escrow_protocol
from trade_escrow.settlement.costs import SettlementRates, calculate_settlement_costs
from trade_escrow.utils.logging_config import setup_logging

logger = structlog.get_logger(__name__)


def print_costs(costs: SettlementCostBreakdown):
    print("\n" + "=" * 60)
    print("           SETTLEMENT COSTS")
    print("=" * 60)
    print(f"Principal:          {costs.principal:>20,}")
    print(f"Platform fee:       {costs.platform_fee:>20,}")
    print(f"Escrow required:    {costs.escrow_required:>20,}")
    print(f"Regulator tax:      {costs.regulator_tax:>20,}")
    print(f"Regulator refund:   {costs.regulator_refund:>20,}")
    print(f"Seller net:         {costs.seller_net:>20,}")
    print("=" * 60)


def print_trade(trade: Trade):
    provider = "self-funded" if trade.is_self_funded else trade.escrow_provider
    print(f"\nTrade #{trade.trade_id}  [{trade.state.name}]")
    print(f"  Buyer:      {trade.buyer}")
    print(f"  Seller:     {trade.seller}")
    print(f"  Escrow:     {provider}")
    print(f"  Amount:     {trade.amount:,}")
    if trade.instrument_asset_id:
        print(f"  Instrument: {trade.instrument_asset_id} ({trade.instrument_type.name})")
    if trade.regulator_wallet:
        print(f"  Regulator:  {trade.regulator_wallet} (tax {trade.regulator_tax_paid:,})")


def print_contract_state(state: ContractState):
    currency = "ALGO" if state.is_native_settlement else f"ASA {state.settlement_currency}"
    print("\n" + "=" * 60)
    print("           CONTRACT STATE")
    print("=" * 60)
    print(f"App ID:              {client_config.contract.app_id}")
    print(f"Next trade id:       {state.next_trade_id}")
    print(f"Settlement currency: {currency}")
    print(f"Platform treasury:   {state.platform_treasury or '-'}")
    for label, value in (
        ("Marketplace fee", state.marketplace_fee_bps),
        ("Regulator tax", state.regulator_tax_bps),
        ("Regulator refund", state.regulator_refund_bps),
    ):
        shown = f"{value} bps" if value is not None else "(not published)"
        print(f"{label + ':':<21}{shown}")
    print("=" * 60)


async def show_trade(protocol: EscrowProtocol, trade_id: int):
    trade = await protocol.get_trade(trade_id)
    if trade is None:
        print(f"\n✗ Trade #{trade_id} not found")
        return

    print_trade(trade)

    metadata = await protocol.get_metadata(trade_id)
    if metadata is not None:
        print(f"  Product:    {metadata.product_type}")
        if metadata.description:
            print(f"  Notes:      {metadata.description}")
        if metadata.ipfs_hash:
            print(f"  Document:   {metadata.ipfs_hash}")

    documents = await protocol.get_creation_documents(trade_id)
    if documents is not None and not documents.is_empty:
        print(f"  Credentials: {', '.join(documents.present_documents)}")

    execution = await protocol.get_execution_documents(trade_id)
    if execution is not None and not execution.is_empty:
        print(f"  Executed by: {execution.executed_by}")


def check_configuration() -> dict:
    result = client_config.validate_configuration()
    print("\n" + "=" * 60)
    print("           CONFIGURATION CHECK")
    print("=" * 60)

    if result["valid"]:
        print("\n✓ Configuration is valid")
    else:
        print("\n✗ Configuration errors:")
        for issue in result["issues"]:
            print(f"   - {issue}")

    print(f"\nNetwork:  {client_config.algod.network}")
    print(f"Algod:    {client_config.algod.address}")
    print(f"App ID:   {client_config.contract.app_id}")
    print("\n" + "=" * 60)
    return result


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Trade Escrow - Algorand trade-finance escrow client"
    )
    parser.add_argument(
        "--check", action="store_true", help="Check configuration and exit"
    )
    parser.add_argument(
        "--costs", type=int, metavar="PRINCIPAL",
        help="Show settlement costs for a principal in settlement units",
    )
    parser.add_argument("--trade", type=int, metavar="ID", help="Show one trade")
    parser.add_argument("--list", action="store_true", help="List trades")
    parser.add_argument(
        "--state",
        choices=[state.name.lower() for state in TradeState],
        help="Filter --list by trade state",
    )
    parser.add_argument(
        "--state-info", action="store_true", help="Show contract global state"
    )

    args = parser.parse_args()

    setup_logging(client_config.logging, json_output=False)

    if args.check:
        check_configuration()
        return

    # Costs need no ledger unless a contract is configured to read rates from
    if args.costs is not None and client_config.contract.app_id <= 0:
        try:
            print_costs(calculate_settlement_costs(
                args.costs, SettlementRates.from_config(client_config.rates)
            ))
        except EscrowProtocolError as e:
            print(f"\n✗ {e}")
        return

    result = client_config.validate_configuration()
    if not result["valid"]:
        print("\n✗ Configuration errors:")
        for issue in result["issues"]:
            print(f"   - {issue}")
        print("\nPlease check your .env file and try again.")
        return

    protocol: Optional[EscrowProtocol] = None
    try:
        protocol = create_escrow_protocol(client_config)

        if args.costs is not None:
            print_costs(await protocol.settlement_costs(args.costs))
        elif args.trade is not None:
            await show_trade(protocol, args.trade)
        elif args.list:
            state = TradeState[args.state.upper()] if args.state else None
            trades = await protocol.list_trades(state=state)
            if not trades:
                print("\nNo trades found")
            for trade in trades:
                print_trade(trade)
        elif args.state_info:
            print_contract_state(await protocol.get_contract_state())
        else:
            parser.print_help()

    except EscrowProtocolError as e:
        logger.error("main.error", error=str(e), error_type=type(e).__name__)
        print(f"\n✗ {e}")
    finally:
        if protocol is not None:
            await protocol.close()


if __name__ == "__main__":
    asyncio.run(main())
