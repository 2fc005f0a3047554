from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """Application settings."""
    
    # Application
    APP_NAME: str = "LAN Scan"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    
    # Network
    NETWORK_INTERFACE: Optional[str] = None  # Default-gateway interface if None
    REQUIRE_PERMISSION_PROBE: bool = True  # Publish a probe service before scanning
    
    # Reachability sweep
    PROBE_WORKERS: int = 64  # concurrent probing units
    PING_TIMEOUT: float = 2.0  # seconds per echo request
    PING_INTERVAL: float = 1.0  # seconds between echo requests to one host
    PING_MAX_TIMEOUTS: int = 2  # host is unreachable after more consecutive timeouts than this
    PING_MAX_SEND_FAILURES: int = 10
    
    # Service discovery
    DISCOVERY_GRACE_PERIOD: float = 1.0  # seconds to keep collecting services after the sweep
    SERVICE_RESOLVE_TIMEOUT: float = 5.0
    ENDPOINT_CONFIRM_TIMEOUT: float = 2.0
    
    # CORS
    CORS_ORIGINS: list[str] = ["*"]
    
    class Config:
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
