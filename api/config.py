"""
Configuration management for the Recipe Share API.

Importing this module reads the project-root .env once; api/main.py imports it
before anything else so backend selection sees those values. Deployed
instances without a .env rely on the process environment alone.

Environment Variables:
- SUPABASE_URL: Supabase project URL (with SUPABASE_ANON_KEY, selects the Supabase backend)
- SUPABASE_ANON_KEY: Supabase anon (public) key
- RECIPESHARE_IMAGE_BUCKET: Optional, storage bucket for recipe images (default "recipe-images")
- RECIPESHARE_GATEWAY_TIMEOUT: Optional, seconds before a backend call fails (default 15)
- LOG_LEVEL: Optional, root log level (default "INFO")
"""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def load_env_file() -> None:
    """Read <project root>/.env into os.environ without overriding set variables."""
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env", override=False)


load_env_file()


class SupabaseConfig:
    """Configuration for the hosted Supabase backend."""

    @staticmethod
    def get_url() -> Optional[str]:
        """
        Get the Supabase project URL.

        Returns:
            URL string or None if not set
        """
        return os.getenv("SUPABASE_URL") or None

    @staticmethod
    def get_anon_key() -> Optional[str]:
        """
        Get the Supabase anon key.

        Returns:
            Key string or None if not set
        """
        return os.getenv("SUPABASE_ANON_KEY") or None

    @staticmethod
    def is_configured() -> bool:
        return bool(SupabaseConfig.get_url() and SupabaseConfig.get_anon_key())


class AppConfig:
    """Application-level settings."""

    @staticmethod
    def get_image_bucket() -> str:
        return os.getenv("RECIPESHARE_IMAGE_BUCKET", "recipe-images")

    @staticmethod
    def get_gateway_timeout() -> float:
        """
        Get the backend request timeout in seconds.

        Invalid or non-positive values fall back to the default of 15 seconds.
        """
        raw = os.getenv("RECIPESHARE_GATEWAY_TIMEOUT", "15")
        try:
            value = float(raw)
        except ValueError:
            logger.warning("Invalid RECIPESHARE_GATEWAY_TIMEOUT=%r, using 15", raw)
            return 15.0
        return value if value > 0 else 15.0

    @staticmethod
    def get_log_level() -> str:
        return os.getenv("LOG_LEVEL", "INFO").upper()


def get_backend_mode() -> str:
    """Return "supabase" when Supabase credentials are set, otherwise "memory"."""
    return "supabase" if SupabaseConfig.is_configured() else "memory"


def configure_logging() -> None:
    """Apply LOG_LEVEL to the root logger (no-op if handlers are already installed)."""
    level = getattr(logging, AppConfig.get_log_level(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
