import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        secret_key: str,
        token_max_age_hours: int,
        due_day_policy: str,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.token_max_age_hours = token_max_age_hours
        self.due_day_policy = due_day_policy
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FIXEDEXP_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("FIXEDEXP_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FIXEDEXP_TIMEZONE", "America/Sao_Paulo")
    secret_key = os.getenv(
        "FIXEDEXP_SECRET_KEY",
        "5c1f0be9d7a04e2d8a77f3c6b1e24d90a6f8c3e25b7d41f09e8a6c2d3b5f7e1a",
    )
    token_max_age_hours = int(os.getenv("FIXEDEXP_TOKEN_MAX_AGE_HOURS", "720"))
    due_day_policy = os.getenv("FIXEDEXP_DUE_DAY_POLICY", "clamp").lower()
    log_level = os.getenv("FIXEDEXP_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        token_max_age_hours=token_max_age_hours,
        due_day_policy=due_day_policy,
        log_level=log_level,
    )
