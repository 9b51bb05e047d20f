# cas_gateway/core/config.py
from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl, Field # AnyHttpUrl stays in pydantic core
from functools import lru_cache
from typing import List, Optional
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


def split_csv(value: str) -> List[str]:
    """Split a comma separated setting into a list, dropping blanks."""
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    PROJECT_NAME: str = "Swarm CAS Gateway"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # Bee node the gateway deposits to and retrieves from
    SWARM_BEE_API_URL: AnyHttpUrl = "http://localhost:1633" # validates that it's a URL
    # Postage batch that pays for uploads (the signing identity)
    SWARM_POSTAGE_BATCH_ID: str = ""
    SWARM_DEFERRED_UPLOAD: bool = False

    # Upload policy
    MAX_FILE_SIZE: int = Field(default=10 * 1024 * 1024, gt=0)  # 10MB
    ALLOWED_FILE_TYPES: str = "image/jpeg,image/png,image/webp,image/gif"
    ALLOWED_FILE_EXTENSIONS: str = ".jpg,.jpeg,.png,.gif,.webp"

    # Staging area; defaults to <system temp>/cas-gateway
    STAGING_DIR: Optional[str] = None
    STAGING_IN_MEMORY: bool = False

    # Retry policies. Uploads get longer timeouts and backoff than downloads.
    UPLOAD_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    UPLOAD_BASE_BACKOFF_MS: int = Field(default=5000, ge=0)
    UPLOAD_TIMEOUT_MS: int = Field(default=90000, gt=0)
    DOWNLOAD_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    DOWNLOAD_BASE_BACKOFF_MS: int = Field(default=3000, ge=0)
    DOWNLOAD_TIMEOUT_MS: int = Field(default=60000, gt=0)

    # Single-shot reads (network status, balance, existence)
    PROBE_TIMEOUT_MS: int = Field(default=10000, gt=0)
    NETWORK_STATUS_NODE_SAMPLE: int = Field(default=4, ge=0)

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
