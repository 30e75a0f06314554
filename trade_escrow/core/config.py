"""Configuration management for the trade escrow client."""

import json
from typing import Dict, Literal, Optional

from pydantic import Field, computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# =============================================================================
# Algod Node Configuration
# =============================================================================


class AlgodConfig(BaseSettings):
    """Connection settings for the algod REST endpoint."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    network: Literal["testnet", "mainnet", "localnet"] = Field(
        default="testnet", validation_alias="ALGOD_NETWORK"
    )
    address: str = Field(
        default="https://testnet-api.algonode.cloud", validation_alias="ALGOD_ADDRESS"
    )
    # Token may be blank for public providers that authenticate via headers
    token: str = Field(default="", validation_alias="ALGOD_TOKEN")
    headers_json: str = Field(default="", validation_alias="ALGOD_HEADERS_JSON")
    executor_workers: int = Field(
        default=4, ge=1, validation_alias="ALGOD_EXECUTOR_WORKERS"
    )

    @computed_field
    @property
    def headers(self) -> Optional[Dict[str, str]]:
        """Extra request headers parsed from ALGOD_HEADERS_JSON."""
        if not self.headers_json.strip():
            return None
        return json.loads(self.headers_json)

    @field_validator("headers_json")
    @classmethod
    def headers_must_be_json(cls, v: str) -> str:
        """Reject header strings that are not a JSON object."""
        if v.strip():
            try:
                parsed = json.loads(v)
            except json.JSONDecodeError as e:
                raise ValueError(f"ALGOD_HEADERS_JSON is not valid JSON: {e}")
            if not isinstance(parsed, dict):
                raise ValueError("ALGOD_HEADERS_JSON must be a JSON object")
        return v


# =============================================================================
# Escrow Contract Configuration
# =============================================================================


class EscrowContractConfig(BaseSettings):
    """Deployed escrow application and confirmation policy."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    app_id: int = Field(default=0, ge=0, validation_alias="ESCROW_APP_ID")
    confirmation_rounds: int = Field(
        default=4, ge=1, validation_alias="ESCROW_CONFIRMATION_ROUNDS"
    )
    explorer_tx_url: str = Field(
        default="https://testnet.explorer.perawallet.app/tx/{tx_id}",
        validation_alias="ESCROW_EXPLORER_TX_URL",
    )

    def explorer_url(self, tx_id: str) -> str:
        """Build a block explorer link for a transaction id."""
        return self.explorer_tx_url.format(tx_id=tx_id)


# =============================================================================
# Settlement Rate Configuration
# =============================================================================


class SettlementRatesConfig(BaseSettings):
    """Fallback settlement rates in basis points.

    The contract's global state is authoritative; these values are only used
    when the ledger does not publish a rate.
    """

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    marketplace_fee_bps: int = Field(
        default=25, ge=0, le=100, validation_alias="MARKETPLACE_FEE_BPS"
    )  # 0.25%
    regulator_tax_bps: int = Field(
        default=500, ge=0, le=1000, validation_alias="REGULATOR_TAX_BPS"
    )  # 5%
    regulator_refund_bps: int = Field(
        default=200, ge=0, le=500, validation_alias="REGULATOR_REFUND_BPS"
    )  # 2%


# =============================================================================
# Transaction Fee Configuration
# =============================================================================


class TransactionFeeConfig(BaseSettings):
    """Flat network fees, in micro-units, per transaction role."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    base_fee: int = Field(default=1000, ge=1000, validation_alias="BASE_FEE")
    # Covers box creation for five boxes on createTrade
    create_trade_min_fee: int = Field(
        default=10000, ge=1000, validation_alias="CREATE_TRADE_MIN_FEE"
    )
    # Outer call plus two inner payments (treasury fee, seller release)
    execute_trade_fee: int = Field(
        default=3000, ge=1000, validation_alias="EXECUTE_TRADE_FEE"
    )
    # Outer call plus one inner refund
    cancel_trade_fee: int = Field(
        default=2000, ge=1000, validation_alias="CANCEL_TRADE_FEE"
    )


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_file: str = Field(default="logs/trade_escrow.log", validation_alias="LOG_FILE")


# =============================================================================
# Container
# =============================================================================


class EscrowClientConfig:
    """
    Container for all escrow client configurations.

    Usage:
        from trade_escrow.core.config import client_config

        app_id = client_config.contract.app_id
        fee = client_config.fees.create_trade_min_fee
    """

    def __init__(self):
        self.algod = AlgodConfig()
        self.contract = EscrowContractConfig()
        self.rates = SettlementRatesConfig()
        self.fees = TransactionFeeConfig()
        self.logging = LoggingConfig()

    @property
    def is_mainnet(self) -> bool:
        """Check if pointed at MainNet."""
        return self.algod.network == "mainnet"

    def validate_configuration(self) -> dict:
        """
        Validate the complete configuration and return any issues.

        Returns:
            Dictionary with 'valid' boolean and 'issues' list
        """
        issues = []

        if self.contract.app_id <= 0:
            issues.append("ESCROW_APP_ID is not set")
        if not self.algod.address.startswith(("http://", "https://")):
            issues.append(f"ALGOD_ADDRESS is not an http(s) URL: {self.algod.address}")
        if self.is_mainnet and "testnet" in self.algod.address:
            issues.append("ALGOD_NETWORK is mainnet but ALGOD_ADDRESS points at testnet")
        if self.fees.create_trade_min_fee < self.fees.base_fee:
            issues.append("CREATE_TRADE_MIN_FEE must not be below BASE_FEE")

        rates = self.rates
        if rates.regulator_tax_bps + rates.regulator_refund_bps > 10000:
            issues.append("Regulator tax and refund rates exceed the principal")

        return {"valid": len(issues) == 0, "issues": issues}


# =============================================================================
# Global Configuration Instances
# =============================================================================

algod_config = AlgodConfig()
contract_config = EscrowContractConfig()
rates_config = SettlementRatesConfig()
fee_config = TransactionFeeConfig()
logging_config = LoggingConfig()

client_config = EscrowClientConfig()


__all__ = [
    "AlgodConfig",
    "EscrowContractConfig",
    "SettlementRatesConfig",
    "TransactionFeeConfig",
    "LoggingConfig",
    "EscrowClientConfig",
    "algod_config",
    "contract_config",
    "rates_config",
    "fee_config",
    "logging_config",
    "client_config",
]
