from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # API Keys
    OPENAI_API_KEY: str = ""
    MORALIS_API_KEY: str = ""
    VALYU_API_KEY: str = ""

    # Supabase
    SUPABASE_URL: str = ""
    SUPABASE_KEY: str = ""
    SUPABASE_REPORTS_TABLE: str = "wallet_reports"

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # LLM
    OPENAI_MODEL: str = "gpt-4o-mini"
    LLM_TEMPERATURE: float = 0.1
    LLM_TIMEOUT: float = 60.0
    NARRATIVE_ENABLED: bool = True
    NARRATIVE_MAX_ITERATIONS: int = 5

    # API URLs
    MORALIS_BASE_URL: str = "https://deep-index.moralis.io/api/v2.2"
    MORALIS_TIMEOUT: float = 30.0
    VALYU_BASE_URL: str = "https://api.valyu.ai/v1"
    VALYU_TIMEOUT: float = 30.0

    # Report storage
    REPORT_BACKEND: str = "file"  # file | supabase
    REPORTS_DIR: str = "./data/wallets"
    REPORT_MAX_AGE_MINUTES: int = 30

    # Chains
    SUPPORTED_CHAINS: List[str] = ["ethereum", "base", "polygon"]
    TRANSACTION_FETCH_LIMIT: int = 100
    TRANSACTIONS_ANALYZED: int = 50

    # Risk thresholds
    MEDIUM_RISK_TX_USD: float = 1000.0
    HIGH_RISK_TX_USD: float = 10000.0
    HIGH_VALUE_TX_ETH: float = 10.0
    ETH_PRICE_USD: float = 2500.0  # rough estimate, no price feed
    DUST_THRESHOLD: float = 0.001
    NEW_WALLET_DAYS: int = 30
    RECENT_TOKEN_DAYS: int = 30

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "allow"


settings = Settings()
