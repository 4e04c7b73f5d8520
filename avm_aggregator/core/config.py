import os
from pydantic import BaseModel

class Settings(BaseModel):
    # Basic
    ENV: str = os.getenv("ENV", "dev")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    CACHE_TTL_SECONDS: int = int(os.getenv("CACHE_TTL_SECONDS", "3600"))

    # Structured AVM API
    AVM_API_PROVIDER: str = os.getenv("AVM_API_PROVIDER", "mock")    # mock | rentcast
    RENTCAST_API_KEY: str | None = os.getenv("RENTCAST_API_KEY")
    RENTCAST_BASE_URL: str = os.getenv("RENTCAST_BASE_URL", "https://api.rentcast.io/v1")
    API_TIMEOUT_SECONDS: float = float(os.getenv("API_TIMEOUT_SECONDS", "15"))

    # Browser automation
    BROWSER_ENABLED: bool = os.getenv("BROWSER_ENABLED", "false").lower() == "true"
    BROWSER_HEADLESS: bool = os.getenv("BROWSER_HEADLESS", "true").lower() == "true"
    BROWSER_USER_AGENT: str = os.getenv(
        "BROWSER_USER_AGENT",
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    )
    NAVIGATION_TIMEOUT_SECONDS: float = float(os.getenv("NAVIGATION_TIMEOUT_SECONDS", "25"))
    # Whole-source budget, must cover navigation plus a full CAPTCHA round trip
    BROWSER_SOURCE_TIMEOUT_SECONDS: float = float(os.getenv("BROWSER_SOURCE_TIMEOUT_SECONDS", "180"))

    # CAPTCHA solving service (2Captcha-compatible)
    CAPTCHA_API_KEY: str | None = os.getenv("CAPTCHA_API_KEY")
    CAPTCHA_BASE_URL: str = os.getenv("CAPTCHA_BASE_URL", "https://2captcha.com")
    CAPTCHA_POLL_INTERVAL_SECONDS: float = float(os.getenv("CAPTCHA_POLL_INTERVAL_SECONDS", "5"))
    CAPTCHA_MAX_ATTEMPTS: int = int(os.getenv("CAPTCHA_MAX_ATTEMPTS", "24"))

    # Search history
    HISTORY_PATH: str = os.getenv("HISTORY_PATH", "./data/avm_history.json")
    HISTORY_CAPACITY: int = int(os.getenv("HISTORY_CAPACITY", "50"))

    # Security
    API_KEY: str | None = os.getenv("API_KEY")
    RATE_LIMIT_RPM: int = int(os.getenv("RATE_LIMIT_RPM", "30"))

    # CORS
    ALLOW_ORIGINS: str = os.getenv("ALLOW_ORIGINS", "*")

    # Cache
    USE_REDIS: bool = os.getenv("USE_REDIS", "false").lower() == "true"
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")

    # Metrics
    PROMETHEUS_ENABLED: bool = os.getenv("PROMETHEUS_ENABLED", "true").lower() == "true"

settings = Settings()
