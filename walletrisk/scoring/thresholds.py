"""Scoring constants, defaulted from settings so deployments can tune them."""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from config.settings import Settings


class ScoringThresholds(BaseModel):
    """Dollar/ETH cutoffs and dust epsilon shared by normalizer and scorers"""
    model_config = ConfigDict(frozen=True)

    medium_risk_tx_usd: float = Field(default=1000.0, ge=0)
    high_risk_tx_usd: float = Field(default=10000.0, ge=0)
    high_value_tx_eth: float = Field(default=10.0, ge=0)
    eth_price_usd: float = Field(default=2500.0, gt=0)
    dust_threshold: float = Field(default=0.001, gt=0)
    new_wallet_days: int = Field(default=30, ge=0)
    recent_token_days: int = Field(default=30, ge=0)
    transactions_analyzed: int = Field(default=50, ge=0)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ScoringThresholds":
        settings = settings or Settings()
        return cls(
            medium_risk_tx_usd=settings.MEDIUM_RISK_TX_USD,
            high_risk_tx_usd=settings.HIGH_RISK_TX_USD,
            high_value_tx_eth=settings.HIGH_VALUE_TX_ETH,
            eth_price_usd=settings.ETH_PRICE_USD,
            dust_threshold=settings.DUST_THRESHOLD,
            new_wallet_days=settings.NEW_WALLET_DAYS,
            recent_token_days=settings.RECENT_TOKEN_DAYS,
            transactions_analyzed=settings.TRANSACTIONS_ANALYZED,
        )
