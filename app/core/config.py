import os
from dataclasses import dataclass, field
from pathlib import Path

try:
    from dotenv import load_dotenv

    # Always load .env from the project root (stable, regardless of CWD)
    BASE_DIR = Path(__file__).resolve().parents[2]
    dotenv_path = BASE_DIR / ".env"
    load_dotenv(dotenv_path=dotenv_path, override=False)
except Exception:
    # dotenv is optional; if not installed, env vars still work
    pass


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return v.strip() if v and v.strip() else default


def _split_keys(raw: str) -> tuple[str, ...]:
    return tuple(k.strip() for k in (raw or "").split(",") if k.strip())


@dataclass(frozen=True)
class Settings:
    env: str = _env("ENV", "local")
    log_level: str = _env("LOG_LEVEL", "INFO")

    # queue/status backend
    kv_backend: str = _env("KV_BACKEND", "redis")
    redis_url: str = _env("REDIS_URL", "redis://localhost:6379/0")

    # order tokens
    order_token_secret: str = _env("ORDER_TOKEN_SECRET")
    token_ttl_days: int = int(_env("TOKEN_TTL_DAYS", "7"))
    status_ttl_days: int = int(_env("STATUS_TTL_DAYS", "7"))
    max_minutes: int = int(_env("MAX_MINUTES", "240"))

    # payment gateway
    razorpay_key_id: str = _env("RAZORPAY_KEY_ID")
    razorpay_key_secret: str = _env("RAZORPAY_KEY_SECRET")
    razorpay_api_base: str = _env("RAZORPAY_API_BASE", "https://api.razorpay.com/v1")
    razorpay_webhook_secret: str = _env("RAZORPAY_WEBHOOK_SECRET")
    gateway_timeout_s: float = float(_env("GATEWAY_TIMEOUT_S", "15"))
    payment_test_mode: bool = _env("PAYMENT_TEST_MODE", "0") == "1"
    promo_flat_off_rupees: int = int(_env("PROMO_FLAT_OFF_RUPEES", "5"))
    webhook_guard: str = _env("WEBHOOK_GUARD")

    # post-payment deploy trigger
    deployer_url: str = _env("DEPLOYER_URL")
    deployer_timeout_s: float = float(_env("DEPLOYER_TIMEOUT_S", "12"))

    # notifications
    resend_api_key: str = _env("RESEND_API_KEY")
    resend_from: str = _env("RESEND_FROM", "Indianode <noreply@indianode.com>")
    resend_api_url: str = _env("RESEND_API_URL", "https://api.resend.com/emails")
    notify_timeout_s: float = float(_env("NOTIFY_TIMEOUT_S", "10"))
    public_base: str = _env("PUBLIC_BASE", "https://www.indianode.com")

    # FX
    fx_api_url: str = _env("FX_API_URL", "https://api.exchangerate.host/latest?base=INR&symbols=USD")
    fx_ttl_s: float = float(_env("FX_TTL_S", str(12 * 60 * 60)))
    fx_fallback_rate: float = float(_env("FX_FALLBACK_RATE", "0.012"))

    @property
    def payments_bypassed(self) -> bool:
        # bypass is never honoured in production
        return self.payment_test_mode and self.env != "production"


@dataclass(frozen=True)
class FamilyConfig:
    """Per-family knobs: prices, SKU aliases, and the worker credential set."""

    name: str
    price60: dict[str, int]
    aliases: dict[str, str] = field(default_factory=dict)
    size_gi: dict[str, int] = field(default_factory=dict)
    worker_keys: tuple[str, ...] = ()
    token_secret: str = ""
    max_minutes: int = 240

    @property
    def queue_key(self) -> str:
        return f"{self.name}:queue"

    def status_key(self, job_id: str) -> str:
        return f"{self.name}:status:{job_id}"

    def redeemed_key(self, digest: str) -> str:
        return f"{self.name}:redeemed:{digest}"


COMPUTE_PRICE60 = {
    "cpu2x4": 60,
    "cpu4x8": 120,
    "cpu8x16": 240,
    "redis4": 49,
    "redis8": 89,
    "redis16": 159,
}
COMPUTE_ALIASES = {
    "cpu_2_4": "cpu2x4",
    "cpu_4_8": "cpu4x8",
    "cpu_8_16": "cpu8x16",
    "redis_4": "redis4",
    "redis_8": "redis8",
    "redis_16": "redis16",
}
GPU_PRICE60 = {"whisper": 100, "sd": 200, "llama": 300}
STORAGE_PRICE60 = {"nvme200": 49, "nvme500": 99, "nvme1tb": 149}
STORAGE_SIZE_GI = {"nvme200": 200, "nvme500": 500, "nvme1tb": 1024}


def _worker_keys(prefix: str, *legacy: str) -> tuple[str, ...]:
    keys = list(_split_keys(_env(f"{prefix}_PROVIDER_KEYS")))
    for name in (f"{prefix}_PROVIDER_KEY", f"{prefix}_WORKER_SECRET", *legacy):
        v = _env(name)
        if v and v not in keys:
            keys.append(v)
    return tuple(keys)


def _token_secret(prefix: str, s: Settings) -> str:
    return _env(f"{prefix}_ORDER_TOKEN_SECRET") or s.order_token_secret


def load_family_configs(s: Settings | None = None) -> dict[str, FamilyConfig]:
    """
    Build one FamilyConfig per product family.

    Worker credentials stay separate per family (COMPUTE_*, GPU_*, STORAGE_*);
    they are not merged into one shared secret.
    """
    s = s or settings
    return {
        "compute": FamilyConfig(
            name="compute",
            price60=COMPUTE_PRICE60,
            aliases=COMPUTE_ALIASES,
            worker_keys=_worker_keys("COMPUTE", "PROVIDER_KEY"),
            token_secret=_token_secret("COMPUTE", s),
            max_minutes=s.max_minutes,
        ),
        "gpu": FamilyConfig(
            name="gpu",
            price60=GPU_PRICE60,
            worker_keys=_worker_keys("GPU"),
            token_secret=_token_secret("GPU", s),
            max_minutes=s.max_minutes,
        ),
        "storage": FamilyConfig(
            name="storage",
            price60=STORAGE_PRICE60,
            size_gi=STORAGE_SIZE_GI,
            worker_keys=_worker_keys("STORAGE"),
            token_secret=_token_secret("STORAGE", s),
            max_minutes=s.max_minutes,
        ),
    }


settings = Settings()
