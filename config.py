import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        secret_key: str,
        access_token_ttl_secs: int,
        refresh_token_ttl_secs: int,
        reset_otp_ttl_secs: int,
        bcrypt_rounds: int,
        cookie_secure: bool,
        cors_origin: str,
        smtp_host: str,
        smtp_port: int,
        smtp_username: str,
        smtp_password: str,
        smtp_use_tls: bool,
        smtp_timeout_secs: float,
        mail_from: str,
        scheduler_enabled: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.access_token_ttl_secs = access_token_ttl_secs
        self.refresh_token_ttl_secs = refresh_token_ttl_secs
        self.reset_otp_ttl_secs = reset_otp_ttl_secs
        self.bcrypt_rounds = bcrypt_rounds
        self.cookie_secure = cookie_secure
        self.cors_origin = cors_origin
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_username = smtp_username
        self.smtp_password = smtp_password
        self.smtp_use_tls = smtp_use_tls
        self.smtp_timeout_secs = smtp_timeout_secs
        self.mail_from = mail_from
        self.scheduler_enabled = scheduler_enabled


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINTRACK_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("FINTRACK_DATABASE_URL")
    if not database_url:
        database_url = f"sqlite:///{_ensure_data_dir() / 'fintrack.db'}"
    return Settings(
        database_url=database_url,
        timezone=os.getenv("FINTRACK_TIMEZONE", "UTC"),
        secret_key=os.getenv(
            "FINTRACK_SECRET_KEY",
            "3f9c1d0b7a2e4c58b61d2f7e9a0c4b3d8e1f6a2c5b9d0e7f4a1c8b3e6d2f9a05",
        ),
        access_token_ttl_secs=int(os.getenv("FINTRACK_ACCESS_TOKEN_TTL_SECS", "900")),
        refresh_token_ttl_secs=int(
            os.getenv("FINTRACK_REFRESH_TOKEN_TTL_SECS", str(7 * 24 * 3600))
        ),
        reset_otp_ttl_secs=int(os.getenv("FINTRACK_RESET_OTP_TTL_SECS", "900")),
        bcrypt_rounds=int(os.getenv("FINTRACK_BCRYPT_ROUNDS", "12")),
        cookie_secure=_env_flag("FINTRACK_COOKIE_SECURE", "false"),
        cors_origin=os.getenv("FINTRACK_CORS_ORIGIN", "http://localhost:3000"),
        smtp_host=os.getenv("FINTRACK_SMTP_HOST", ""),
        smtp_port=int(os.getenv("FINTRACK_SMTP_PORT", "587")),
        smtp_username=os.getenv("FINTRACK_SMTP_USERNAME", ""),
        smtp_password=os.getenv("FINTRACK_SMTP_PASSWORD", ""),
        smtp_use_tls=_env_flag("FINTRACK_SMTP_USE_TLS", "true"),
        smtp_timeout_secs=float(os.getenv("FINTRACK_SMTP_TIMEOUT_SECS", "10")),
        mail_from=os.getenv("FINTRACK_MAIL_FROM", "Expense Tracker <no-reply@localhost>"),
        scheduler_enabled=_env_flag("FINTRACK_SCHEDULER_ENABLED", "true"),
    )
