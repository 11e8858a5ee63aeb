"""
Configuration Management

Uses Pydantic Settings for environment-based configuration.
Loads from .env file automatically.
"""

from typing import Dict, List, Optional
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",  # Ignore extra fields in .env file
        case_sensitive=False,  # Allow both UPPERCASE and lowercase
    )

    # Database (resolved in database.session when unset)
    DATABASE_URL: Optional[str] = None

    # AI platforms
    OPENAI_API_KEY: Optional[str] = None
    ANTHROPIC_API_KEY: Optional[str] = None
    GOOGLE_API_KEY: Optional[str] = None
    PERPLEXITY_API_KEY: Optional[str] = None

    CHATGPT_SEARCH_MODEL: str = "o4-mini"
    OPENAI_ANALYSIS_MODEL: str = "gpt-4o"
    COMPETITOR_EXTRACTION_MODEL: str = "gpt-4o-mini"
    CLAUDE_MODEL: str = "claude-sonnet-4-20250514"
    GEMINI_MODEL: str = "gemini-2.0-flash"
    PERPLEXITY_MODEL: str = "sonar-pro"

    # Resend (Optional - for email delivery)
    RESEND_API_KEY: Optional[str] = None
    FROM_EMAIL: str = "reports@outrankllm.io"
    APP_URL: str = "https://outrankllm.io"

    # Application Settings
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Reports
    FREE_REPORT_EXPIRY_DAYS: int = 7
    VERIFICATION_TOKEN_HOURS: int = 24
    PROMPT_LIMIT: int = 7

    # Scoring weights by platform reach
    REACH_WEIGHTS: Dict[str, float] = {
        "chatgpt": 10,
        "perplexity": 4,
        "gemini": 2,
        "claude": 1,
    }

    # Platforms whose queries each run as their own step
    PER_QUERY_STEP_PLATFORMS: List[str] = ["chatgpt"]

    # Workflow runtime
    STEP_MAX_RETRIES: int = 3
    STEP_RETRY_DELAY: float = 1.0
    SCAN_TIMEOUT_SECONDS: float = 600
    ENRICHMENT_TIMEOUT_SECONDS: float = 900
    SITE_ANALYSIS_WAIT_ATTEMPTS: int = 5
    SITE_ANALYSIS_WAIT_DELAY: float = 2.0

    # Enrichment generation
    ACTION_PLAN_MAX_TOKENS: int = 16000
    PRD_MAX_TOKENS: int = 24000
    THINKING_BUDGET_TOKENS: int = 10000

    # Timeouts
    PLATFORM_QUERY_TIMEOUT: float = 90
    SITEMAP_TIMEOUT: float = 8
    ROBOTS_TIMEOUT: float = 5
    PAGE_TIMEOUT: float = 15

    # Crawler limits
    MAX_CRAWL_PAGES: int = 15
    MAX_SITEMAP_URLS: int = 20


@lru_cache
def get_settings() -> Settings:
    """Get or create cached settings instance."""
    return Settings()
