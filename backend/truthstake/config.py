from decimal import Decimal
from pydantic_settings import BaseSettings
from typing import List, Optional

DEFAULT_MODEL_ORDER = "gemini-2.5-pro,gemini-2.5-flash,gemini-2.0-flash,gemini-1.5-pro"
DEFAULT_TRUSTED_DOMAINS = "bbc.com,reuters.com,apnews.com,nature.com,who.int,nytimes.com"


def _split_csv(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


class Settings(BaseSettings):
    gemini_api_key: Optional[str] = None
    gemini_model_order: str = DEFAULT_MODEL_ORDER
    llm_timeout_sec: float = 30.0
    llm_temperature: float = 0.15
    llm_max_output_tokens: int = 900
    log_llm_calls: bool = True
    llm_log_dir: Optional[str] = None

    # verification blend
    weight_ai: float = 0.35
    weight_evidence: float = 0.25
    weight_user_cred: float = 0.20
    weight_source: float = 0.20

    fee_bps: int = 0
    min_stake: Decimal = Decimal("0.001")
    trusted_domains: str = DEFAULT_TRUSTED_DOMAINS
    voting_duration_sec: int = 300

    database_url: str = "sqlite:///./truthstake.db"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @property
    def model_order(self) -> List[str]:
        return _split_csv(self.gemini_model_order) or _split_csv(DEFAULT_MODEL_ORDER)

    @property
    def trusted_domain_list(self) -> List[str]:
        return [d.lower() for d in _split_csv(self.trusted_domains)]


settings = Settings()
