import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        environment: str,
        access_token_secret: str,
        refresh_token_secret: str,
        access_token_ttl_minutes: int,
        refresh_token_ttl_days: int,
        tokens_in_body: bool,
        cors_origins: list[str],
        auth_rate_limit: int,
        auth_rate_window_secs: int,
        api_rate_limit: int,
        api_rate_window_secs: int,
        expense_rate_limit: int,
        expense_rate_window_secs: int,
        scheduler_enabled: bool,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.environment = environment
        self.access_token_secret = access_token_secret
        self.refresh_token_secret = refresh_token_secret
        self.access_token_ttl_minutes = access_token_ttl_minutes
        self.refresh_token_ttl_days = refresh_token_ttl_days
        self.tokens_in_body = tokens_in_body
        self.cors_origins = cors_origins
        self.auth_rate_limit = auth_rate_limit
        self.auth_rate_window_secs = auth_rate_window_secs
        self.api_rate_limit = api_rate_limit
        self.api_rate_window_secs = api_rate_window_secs
        self.expense_rate_limit = expense_rate_limit
        self.expense_rate_window_secs = expense_rate_window_secs
        self.scheduler_enabled = scheduler_enabled
        self.log_level = log_level

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def access_token_ttl_secs(self) -> int:
        return self.access_token_ttl_minutes * 60

    @property
    def refresh_token_ttl_secs(self) -> int:
        return self.refresh_token_ttl_days * 24 * 3600


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _cors_origins() -> list[str]:
    raw = os.getenv(
        "FINANCE_CORS_ORIGINS",
        "http://localhost:3000,http://localhost:5173,http://localhost:5175",
    )
    origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url and frontend_url not in origins:
        origins.append(frontend_url)
    return origins


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    return Settings(
        database_url=os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}"),
        timezone=os.getenv("FINANCE_TIMEZONE", "UTC"),
        environment=os.getenv("FINANCE_ENV", "development").strip().lower(),
        access_token_secret=os.getenv(
            "FINANCE_ACCESS_TOKEN_SECRET",
            "5f0c1b9a2d7e4c3f8a6b1d0e9c8b7a6f5e4d3c2b1a0f9e8d7c6b5a4f3e2d1c0b",
        ),
        refresh_token_secret=os.getenv(
            "FINANCE_REFRESH_TOKEN_SECRET",
            "a3e1f7c9b2d4068e5f1a3c7b9d2e4f6081a3c5e7b9d1f3a5c7e9b1d3f5a7c9e1",
        ),
        access_token_ttl_minutes=int(os.getenv("FINANCE_ACCESS_TOKEN_TTL_MINUTES", "30")),
        refresh_token_ttl_days=int(os.getenv("FINANCE_REFRESH_TOKEN_TTL_DAYS", "7")),
        tokens_in_body=_env_flag("FINANCE_TOKENS_IN_BODY", "false"),
        cors_origins=_cors_origins(),
        auth_rate_limit=int(os.getenv("FINANCE_AUTH_RATE_LIMIT", "5")),
        auth_rate_window_secs=int(os.getenv("FINANCE_AUTH_RATE_WINDOW_SECS", "900")),
        api_rate_limit=int(os.getenv("FINANCE_API_RATE_LIMIT", "100")),
        api_rate_window_secs=int(os.getenv("FINANCE_API_RATE_WINDOW_SECS", "900")),
        expense_rate_limit=int(os.getenv("FINANCE_EXPENSE_RATE_LIMIT", "30")),
        expense_rate_window_secs=int(os.getenv("FINANCE_EXPENSE_RATE_WINDOW_SECS", "60")),
        scheduler_enabled=_env_flag("FINANCE_SCHEDULER_ENABLED", "true"),
        log_level=os.getenv("FINANCE_LOG_LEVEL", "INFO").upper(),
    )
