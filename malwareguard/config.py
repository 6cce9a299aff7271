from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    # API Configuration
    APP_NAME: str = "MalwareGuard"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api/v1"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Settings store (API provider choice, keys, app lock state)
    DATABASE_URL: str = "sqlite:///./data/malwareguard.db"

    # Enrichment collaborators
    DOH_ENDPOINT: str = "https://cloudflare-dns.com/dns-query"
    BREACH_API_URL: str = "https://haveibeenpwned.com/api/v3/breachedaccount"
    HIBP_API_KEY: Optional[str] = None
    DNSBL_ZONE: str = "dbl.spamhaus.org"
    ENRICHMENT_TIMEOUT: float = 5.0

    # Seed for the simulated breach fallback
    FALLBACK_SEED: int = 1337

    # Optional intel file extending the built-in domain lists
    INTEL_DB_PATH: Optional[str] = None

    # Scan history kept in memory for the session
    HISTORY_LIMIT: int = 10

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
