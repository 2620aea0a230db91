from typing import Optional, Union
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Root directory of the userpulse package
SERVICE_ROOT_DIR = Path(__file__).parent.parent.resolve()
# Repository root, where the .env file lives
PROJECT_ROOT_DIR = SERVICE_ROOT_DIR.parent


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(',') if item.strip()]


class Settings(BaseSettings):
    # Application settings
    APP_NAME: str = "UserPulse"
    APP_VERSION: str = "0.1.0"
    DEBUG: bool = False
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8002

    # Security settings
    ALLOWED_HOSTS: Union[str, list[str]] = "localhost,127.0.0.1,0.0.0.0"
    CORS_ORIGINS: Union[str, list[str]] = "http://localhost:3000,http://localhost:8080"
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: Union[str, list[str]] = "GET,POST"
    CORS_ALLOW_HEADERS: Union[str, list[str]] = "*"

    # Reddit credentials. Without username/password the client runs read-only.
    REDDIT_CLIENT_ID: str = ""
    REDDIT_CLIENT_SECRET: str = ""
    REDDIT_USERNAME: Optional[str] = None
    REDDIT_PASSWORD: Optional[str] = None
    REDDIT_USER_AGENT: str = "userpulse/0.1 (competitive intelligence miner)"

    # Source rate limiting and retries
    RATE_LIMIT_MAX_REQUESTS_PER_MINUTE: int = 100
    RATE_LIMIT_MIN_REMAINING_CALLS: int = 5
    RATE_LIMIT_SLEEP_BUFFER_SEC: int = 2
    SOURCE_MAX_RETRIES: int = 3
    SOURCE_INITIAL_BACKOFF_SEC: float = 1.0
    SOURCE_MAX_BACKOFF_SEC: float = 32.0
    FAILURE_THRESHOLD: int = 5

    # Summarizer (OpenAI)
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o"
    OPENAI_MAX_TOKENS: int = 4000
    OPENAI_TEMPERATURE: float = 0.7
    SUMMARIZER_TIMEOUT_SECONDS: float = 45.0
    SUMMARIZER_BATCH_SIZE: int = 100
    DEFAULT_ASPECT: str = "love"
    PRODUCT_PAGE_TIMEOUT_SECONDS: float = 10.0
    PRODUCT_PAGE_MAX_CHARS: int = 4000

    # Crawler
    DEFAULT_COMMUNITIES: Union[str, list[str]] = (
        "SaaS,startups,Entrepreneur,webdev,programming,technology,"
        "productivity,smallbusiness,sideproject"
    )
    CRAWL_CONCURRENCY: int = 5
    SEARCH_RESULT_LIMIT: int = 50
    QUERY_VARIANT_LIMIT: int = 5
    REPLY_FETCH_THRESHOLD: int = 5
    REPLY_LIMIT: int = 20
    ENGAGEMENT_OVERRIDE_REPLIES: int = 3
    TEXT_MAX_CHARS: int = 500
    EVIDENCE_URL_PATTERNS: Union[str, list[str]] = "github.com,/blog/,/docs/,/changelog,medium.com,substack.com"

    # Reduction
    NEAR_DUPLICATE_RATIO: float = 0.2
    RANK_WEIGHT_FRESHNESS: float = 0.40
    RANK_WEIGHT_VELOCITY: float = 0.25
    RANK_WEIGHT_ENGAGEMENT: float = 0.20
    RANK_WEIGHT_EVIDENCE: float = 0.10
    RANK_WEIGHT_AUTHORITY: float = 0.05
    RANK_HALF_LIFE_DAYS: float = 7.0

    # Classify / compose
    CLASSIFY_CONCURRENCY: int = 3
    REPORT_APPENDIX_ROWS: int = 50
    FALLBACK_APPENDIX_ROWS: int = 200

    # Jobs
    JOB_LOG_TAIL: int = 50
    POLL_INTERVAL_SECONDS: float = 1.0
    POLL_TIMEOUT_SECONDS: float = 900.0
    SHUTDOWN_GRACE_SECONDS: float = 5.0

    # Monitoring
    ENABLE_PROMETHEUS: bool = False
    PROMETHEUS_PORT: int = 8003

    # Logging configuration path (can be overridden by env var)
    LOGGING_CONFIG_PATH: str = str(SERVICE_ROOT_DIR / "config" / "logging_config.yaml")

    def model_post_init(self, __context) -> None:
        """Parse comma-separated strings into lists after model initialization."""
        if isinstance(self.ALLOWED_HOSTS, str):
            self.ALLOWED_HOSTS = _split_csv(self.ALLOWED_HOSTS)

        if isinstance(self.CORS_ORIGINS, str):
            self.CORS_ORIGINS = _split_csv(self.CORS_ORIGINS)

        if isinstance(self.CORS_ALLOW_METHODS, str):
            self.CORS_ALLOW_METHODS = _split_csv(self.CORS_ALLOW_METHODS)

        if isinstance(self.CORS_ALLOW_HEADERS, str):
            if self.CORS_ALLOW_HEADERS == "*":
                self.CORS_ALLOW_HEADERS = ["*"]
            else:
                self.CORS_ALLOW_HEADERS = _split_csv(self.CORS_ALLOW_HEADERS)

        if isinstance(self.DEFAULT_COMMUNITIES, str):
            self.DEFAULT_COMMUNITIES = _split_csv(self.DEFAULT_COMMUNITIES)

        if isinstance(self.EVIDENCE_URL_PATTERNS, str):
            self.EVIDENCE_URL_PATTERNS = _split_csv(self.EVIDENCE_URL_PATTERNS)

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT_DIR / ".env"),  # Load variables from project root .env
        env_file_encoding='utf-8',
        extra='ignore',
    )


# Instantiate settings
settings = Settings()
