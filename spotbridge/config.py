import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_REDIRECT_URI = "http://localhost:8888/callback"
SECRET_CIPHER_DICT_URL = (
    "https://github.com/xyloflake/spot-secrets-go/blob/main/secrets/secretDict.json?raw=true"
)
DEFAULT_TOTP_VERSION = 61
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    sp_dc: str = ""
    client_id: str = ""
    client_secret: str = ""
    redirect_uri: str = DEFAULT_REDIRECT_URI
    host: str = "127.0.0.1"
    port: int = 8888
    static_dir: Optional[str] = None
    secrets_url: str = SECRET_CIPHER_DICT_URL
    totp_version: int = DEFAULT_TOTP_VERSION
    http_timeout: float = 20.0
    warm_token: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """Build settings from .env and the process environment"""
        if dotenv:
            load_dotenv()

        sp_dc = os.getenv("SP_DC", "")
        if not sp_dc:
            logger.warning("SP_DC environment variable not set. Lyrics and web player features will fail!")

        redirect_uri = os.getenv("REDIRECT_URI")
        if not redirect_uri:
            logger.warning(
                f"REDIRECT_URI not set; defaulting to {DEFAULT_REDIRECT_URI}. "
                "Make sure this URL is registered in the Spotify dashboard."
            )

        return cls(
            sp_dc=sp_dc,
            client_id=os.getenv("CLIENT_ID", ""),
            client_secret=os.getenv("CLIENT_SECRET", ""),
            redirect_uri=redirect_uri or DEFAULT_REDIRECT_URI,
            host=os.getenv("HOST", "127.0.0.1"),
            port=int(os.getenv("PORT", "8888")),
            static_dir=os.getenv("SPOTBRIDGE_STATIC_DIR") or None,
            secrets_url=os.getenv("SPOTBRIDGE_SECRETS_URL", SECRET_CIPHER_DICT_URL),
            totp_version=int(os.getenv("SPOTBRIDGE_TOTP_VERSION", str(DEFAULT_TOTP_VERSION))),
            http_timeout=float(os.getenv("SPOTBRIDGE_HTTP_TIMEOUT", "20")),
            warm_token=_env_bool("SPOTBRIDGE_WARM_TOKEN", True),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
