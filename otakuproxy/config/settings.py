from typing import Optional, List, Dict, Any
from pydantic import computed_field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False
    )

    # ===========================
    # Application Customization
    # ===========================
    APP_NAME: Optional[str] = "OtakuProxy"

    # ===========================
    # Server Configuration
    # ===========================
    PORT: Optional[int] = 3000

    # ===========================
    # Conversion Strategy Configuration
    # ===========================
    CONVERT_STRATEGY: str = "direct"
    CONVERT_FALLBACK: bool = False
    CONVERT_ALLOWED_HOSTS: List[str] = ["instagram.com", "www.instagram.com"]

    # ===========================
    # FastDl Provider Configuration
    # ===========================
    FASTDL_URL: str = "https://fastdl.app"
    FASTDL_FORM_PATH: str = "/en2"
    FASTDL_COOKIE: str = "uid=b76bcd5fc44fa5c0; googleAds=99"
    FASTDL_REFERER: str = "https://fastdl.app/en"
    FASTDL_USER_AGENT: str = (
        "Mozilla/5.0 (iPhone; CPU iPhone OS 16_6 like Mac OS X) AppleWebKit/605.1.15 "
        "(KHTML, like Gecko) Version/16.6 Mobile/15E148 Safari/604.1"
    )
    FASTDL_SALT: str = "fastdl"
    FASTDL_OFFSET_MS: int = 1_000_000
    FASTDL_TIMEOUT: int = 15

    # ===========================
    # Browser Automation Configuration
    # ===========================
    BROWSER_USER_DATA_DIR: str = "./.browser-data"
    BROWSER_HEADLESS: bool = True
    BROWSER_MAX_PAGES: int = 2
    BROWSER_PAGE_TIMEOUT: int = 60
    BROWSER_USER_AGENT: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    )
    BROWSER_LOCALE: str = "en-US"
    BROWSER_TIMEZONE: str = "America/New_York"

    # ===========================
    # Source Configuration
    # ===========================
    CBR_URL: str = "https://www.cbr.com"
    CBR_FEED_PAGES: int = 3
    LIVECHART_URL: str = "https://www.livechart.me"
    SCRAPER_USER_AGENT: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
    )
    SCHEDULE_TIMEZONE: str = "America/Jamaica"

    # ===========================
    # Cache Configuration
    # ===========================
    FEED_CACHE_TTL: int = 300
    NEWS_CACHE_TTL: int = 3600

    # ===========================
    # HTTP Timeout Configuration
    # ===========================
    HTTP_TIMEOUT: Optional[int] = 15
    HEALTH_CHECK_TIMEOUT: Optional[int] = 5

    # ===========================
    # Keep-alive Configuration
    # ===========================
    KEEPALIVE_URL: Optional[str] = None
    KEEPALIVE_INTERVAL: int = 30

    # ===========================
    # Proxy Configuration
    # ===========================
    PROXY_URL: Optional[str] = None

    # ===========================
    # Security Configuration
    # ===========================
    ADMIN_PASSWORD: Optional[str] = ""

    # ===========================
    # Logging Configuration
    # ===========================
    LOG_LEVEL: Optional[str] = "DEBUG"

    # ===========================
    # Internal Configuration
    # ===========================
    CLEANUP_INTERVAL: int = 60

    # ===========================
    # Field Validators
    # ===========================
    @field_validator("FASTDL_URL", "CBR_URL", "LIVECHART_URL", "PROXY_URL")
    @classmethod
    def normalize_urls(cls, v):
        if isinstance(v, str):
            return v.rstrip("/")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v

    @field_validator("CONVERT_STRATEGY")
    @classmethod
    def normalize_strategy(cls, v):
        v = v.strip().lower()
        if v not in ("direct", "browser"):
            raise ValueError(f"Unknown conversion strategy: {v}")
        return v

    # ===========================
    # Computed Properties
    # ===========================
    @computed_field
    @property
    def FASTDL_HEADERS(self) -> Dict[str, Any]:
        return {
            "Cookie": self.FASTDL_COOKIE,
            "Referer": self.FASTDL_REFERER,
            "User-Agent": self.FASTDL_USER_AGENT,
        }


# ===========================
# Settings Instance
# ===========================
settings = Settings()


# ===========================
# Settings Reload
# ===========================
def reload_settings() -> Settings:
    fresh = Settings()
    for name in Settings.model_fields:
        setattr(settings, name, getattr(fresh, name))
    return settings
