# otp_service/core/config.py
import os

from dotenv import load_dotenv


def str_to_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def merge_unique(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for v in items:
        if v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


SUPPORTED_STORE_BACKENDS = {"supabase", "database"}


class Settings:
    def __init__(self) -> None:
        self.ENV = os.getenv("ENV", "dev").strip().lower()  # dev | prod
        if self.ENV != "prod":
            # Load .env only for non-prod so prod can't be accidentally influenced by local files.
            load_dotenv()

        self.PORT = int(os.getenv("PORT", "3000"))
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper()

        # ----------------------------
        # Backend (secret + identity stores)
        # ----------------------------
        self.OTP_STORE_BACKEND = os.getenv("OTP_STORE_BACKEND", "supabase").strip().lower()

        self.SUPABASE_URL = os.getenv("SUPABASE_URL", "").strip().rstrip("/")
        self.SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
        self.SUPABASE_TIMEOUT_SECONDS = float(os.getenv("SUPABASE_TIMEOUT_SECONDS", "10"))
        self.SUPABASE_OTP_TABLE = os.getenv("SUPABASE_OTP_TABLE", "email_otps").strip()
        self.SUPABASE_ADMIN_PAGE_SIZE = int(os.getenv("SUPABASE_ADMIN_PAGE_SIZE", "200"))

        self.DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./otp_service.db")

        # ----------------------------
        # OTP policy
        # ----------------------------
        self.OTP_LENGTH = int(os.getenv("OTP_LENGTH", "6"))
        self.OTP_TTL_SECONDS = int(os.getenv("OTP_TTL_SECONDS", "600"))
        self.OTP_RESEND_COOLDOWN_SECONDS = int(os.getenv("OTP_RESEND_COOLDOWN_SECONDS", "60"))

        # ----------------------------
        # CORS
        # ----------------------------
        dev_defaults = [
            "http://localhost:8080",
            "http://localhost:3000",
        ]

        cors_from_env = parse_csv(os.getenv("CORS_ORIGINS"))
        if self.ENV == "prod":
            self.CORS_ORIGINS = merge_unique(cors_from_env)
        else:
            self.CORS_ORIGINS = merge_unique(cors_from_env + dev_defaults)

        # ----------------------------
        # Rate limiting
        # ----------------------------
        self.ENABLE_RATE_LIMITING = str_to_bool(os.getenv("ENABLE_RATE_LIMITING", "false"))
        self.OTP_VERIFY_RATE_LIMIT = os.getenv("OTP_VERIFY_RATE_LIMIT", "10/minute")
        self.OTP_SEND_RATE_LIMIT = os.getenv("OTP_SEND_RATE_LIMIT", "5/minute")

        # ----------------------------
        # Email delivery
        # ----------------------------
        self.EMAIL_ENABLED = str_to_bool(os.getenv("EMAIL_ENABLED"), default=False)
        self.EMAIL_PROVIDER = os.getenv("EMAIL_PROVIDER", "resend").strip().lower()
        self.EMAIL_BRAND_NAME = os.getenv("EMAIL_BRAND_NAME", "Avia Capital")

        self.FROM_EMAIL = os.getenv("FROM_EMAIL", "")
        self.RESEND_API_KEY = os.getenv("RESEND_API_KEY", "")
        self.AWS_REGION = os.getenv("AWS_REGION", "")

        # SMTP (only relevant if EMAIL_PROVIDER=smtp)
        self.SMTP_HOST = os.getenv("SMTP_HOST", "")
        self.SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
        self.SMTP_USERNAME = os.getenv("SMTP_USERNAME", "")
        self.SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
        self.SMTP_USE_TLS = str_to_bool(os.getenv("SMTP_USE_TLS", "true"), default=True)
        self.SMTP_USE_SSL = str_to_bool(os.getenv("SMTP_USE_SSL", "false"), default=False)

        if self.OTP_STORE_BACKEND not in SUPPORTED_STORE_BACKENDS:
            raise RuntimeError(
                f"Unsupported OTP_STORE_BACKEND={self.OTP_STORE_BACKEND!r}. "
                f"Supported: {', '.join(sorted(SUPPORTED_STORE_BACKENDS))}."
            )

        # Final: fail fast in prod
        self._validate_prod()

    def _validate_prod(self) -> None:
        if self.ENV != "prod":
            return

        missing: list[str] = []

        if self.OTP_STORE_BACKEND == "supabase":
            if not self.SUPABASE_URL:
                missing.append("SUPABASE_URL")
            if not self.SUPABASE_SERVICE_ROLE_KEY:
                missing.append("SUPABASE_SERVICE_ROLE_KEY")
            if self.SUPABASE_URL and not self.SUPABASE_URL.startswith("https://"):
                raise RuntimeError("SUPABASE_URL should be https://... in prod")

        if not self.CORS_ORIGINS:
            missing.append("CORS_ORIGINS")

        cors_joined = ",".join(self.CORS_ORIGINS)
        if "localhost" in cors_joined or "127.0.0.1" in cors_joined:
            raise RuntimeError("CORS_ORIGINS contains localhost/dev origins in prod")

        if missing:
            raise RuntimeError(f"Missing required prod env vars: {', '.join(missing)}")

    @property
    def is_prod(self) -> bool:
        return self.ENV == "prod"

    @property
    def otp_ttl_minutes(self) -> int:
        return max(1, self.OTP_TTL_SECONDS // 60)


settings = Settings()
