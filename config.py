import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        access_token_secret: str,
        access_token_expiry_secs: int,
        refresh_token_secret: str,
        refresh_token_expiry_secs: int,
        cors_origins: list[str],
        cookie_secure: bool,
        bcrypt_rounds: int,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.access_token_secret = access_token_secret
        self.access_token_expiry_secs = access_token_expiry_secs
        self.refresh_token_secret = refresh_token_secret
        self.refresh_token_expiry_secs = refresh_token_expiry_secs
        self.cors_origins = cors_origins
        self.cookie_secure = cookie_secure
        self.bcrypt_rounds = bcrypt_rounds
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    access_token_secret = os.getenv(
        "FINANCE_ACCESS_TOKEN_SECRET",
        "4c1d0e9b7f2a48a6b3e5d8c0f1a2b3c4d5e6f708192a3b4c5d6e7f8091a2b3c4",
    )
    refresh_token_secret = os.getenv(
        "FINANCE_REFRESH_TOKEN_SECRET",
        "9e8d7c6b5a4f3e2d1c0b9a8f7e6d5c4b3a2f1e0d9c8b7a6f5e4d3c2b1a0f9e8d",
    )
    access_token_expiry_secs = int(
        os.getenv("FINANCE_ACCESS_TOKEN_EXPIRY_SECS", "86400")
    )
    refresh_token_expiry_secs = int(
        os.getenv("FINANCE_REFRESH_TOKEN_EXPIRY_SECS", "864000")
    )
    cors_origins = [
        origin.strip()
        for origin in os.getenv("FINANCE_CORS_ORIGINS", "http://localhost:5173").split(
            ","
        )
        if origin.strip()
    ]
    cookie_secure = _env_bool("FINANCE_COOKIE_SECURE", False)
    bcrypt_rounds = int(os.getenv("FINANCE_BCRYPT_ROUNDS", "12"))
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        access_token_secret=access_token_secret,
        access_token_expiry_secs=access_token_expiry_secs,
        refresh_token_secret=refresh_token_secret,
        refresh_token_expiry_secs=refresh_token_expiry_secs,
        cors_origins=cors_origins,
        cookie_secure=cookie_secure,
        bcrypt_rounds=bcrypt_rounds,
        log_level=log_level,
    )
