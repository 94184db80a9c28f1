from typing import Optional
from urllib.parse import urlparse, urlunparse

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    PORT: int = 3000
    LOG_LEVEL: str = "INFO"

    # flat-file persistence root (users/, posts/, sessions/ live below it)
    DATA_DIR: str = "data"

    # managed SDK; absent -> managed paths report "unavailable"
    NEYNAR_API_KEY: Optional[str] = None
    NEYNAR_API_BASE: str = "https://api.neynar.com"

    # direct protocol; the app's own account signs SignedKeyRequests
    APP_FID: Optional[int] = None
    APP_MNEMONIC: Optional[str] = None
    FARCASTER_API_BASE: str = "https://api.farcaster.xyz"
    FARCASTER_HUB_BASE: str = "https://nemes.farcaster.xyz:2281"
    FARCASTER_NETWORK: str = "mainnet"
    SIGNED_KEY_REQUEST_TTL_SECONDS: int = 86400

    UPSTREAM_TIMEOUT_SECONDS: float = 10.0

    RATE_LIMIT_MAX_REQUESTS: int = 10
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    SESSION_MAX_AGE_SECONDS: int = 86400
    SESSION_SWEEP_INTERVAL_SECONDS: int = 3600
    SIGNER_CACHE_SIZE: int = 10000

    class Config:
        env_file = ".env"

    @field_validator("FARCASTER_API_BASE", "FARCASTER_HUB_BASE", "NEYNAR_API_BASE")
    @classmethod
    def normalize_base_url(cls, v: str) -> str:
        """
        Upstream bases must be absolute http(s) URLs.

        Normalization:
          - strip whitespace
          - strip trailing slash
          - lowercase hostname, keep port
        """
        v = (v or "").strip().rstrip("/")
        p = urlparse(v)

        if p.scheme not in ("http", "https"):
            raise ValueError("upstream base URL must start with http:// or https://")

        if not p.hostname:
            raise ValueError("upstream base URL must include a hostname")

        netloc = p.hostname.lower()
        if p.port:
            netloc = f"{netloc}:{p.port}"

        return urlunparse((p.scheme, netloc, p.path.rstrip("/"), "", "", ""))

    @field_validator("NEYNAR_API_KEY", "APP_MNEMONIC")
    @classmethod
    def blank_to_none(cls, v):
        # an empty env var means "not configured"
        if v is None:
            return None
        v = str(v).strip()
        return v or None

    @field_validator("APP_FID", mode="before")
    @classmethod
    def normalize_app_fid(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return v

    @field_validator("FARCASTER_NETWORK")
    @classmethod
    def normalize_network(cls, v: str) -> str:
        v = (v or "").strip().lower()
        if v not in ("mainnet", "testnet", "devnet"):
            raise ValueError("FARCASTER_NETWORK must be mainnet, testnet or devnet")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return (v or "").strip().upper() or "INFO"

    @property
    def direct_signing_missing(self) -> list[str]:
        """Env vars still needed before direct signers can be issued."""
        missing = []
        if self.APP_FID is None:
            missing.append("APP_FID")
        if self.APP_MNEMONIC is None:
            missing.append("APP_MNEMONIC")
        return missing


settings = Settings()


def get_settings() -> Settings:
    return settings
