"""
Environment configuration for the VISO FastAPI backend.

Supabase settings accept both the public (NEXT_PUBLIC_*) names shared with the
rest of the platform and the plain server-side names. The first one that is set
wins, in the order listed on each property.
"""

import logging
from functools import lru_cache

from pydantic_settings import BaseSettings

logger = logging.getLogger("viso")

DEFAULT_SHELL_LOGIN_URL = "https://os.ventogroup.co/login"
DEFAULT_HUB_URL = "https://os.ventogroup.co"

# Paths the edge gate never touches (matched against the text after the leading "/")
DEFAULT_EXCLUDED_PREFIXES = (
    "_next",
    "login",
    "favicon.ico",
    "logos",
    "images",
    "fonts",
    "api",
)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    """

    # ==========================================================================
    # ENVIRONMENT
    # ==========================================================================
    ENVIRONMENT: str = "development"  # 'local', 'development', 'test', 'production'
    PORT: int = 3010
    LOG_LEVEL: str = "INFO"

    # Permission namespace of this app
    APP_ID: str = "viso"

    # ==========================================================================
    # SUPABASE
    # ==========================================================================
    NEXT_PUBLIC_SUPABASE_URL: str | None = None
    SUPABASE_URL: str | None = None

    NEXT_PUBLIC_SUPABASE_PUBLISHABLE_KEY: str | None = None
    NEXT_PUBLIC_SUPABASE_ANON_KEY: str | None = None
    SUPABASE_ANON_KEY: str | None = None

    # Seconds before a call to Supabase Auth is abandoned
    SUPABASE_AUTH_TIMEOUT: float = 5.0

    # ==========================================================================
    # COOKIES
    # ==========================================================================
    NEXT_PUBLIC_COOKIE_DOMAIN: str | None = None
    COOKIE_DOMAIN: str | None = None

    # ==========================================================================
    # EDGE GATE
    # ==========================================================================
    NEXT_PUBLIC_DEBUG_AUTH: str = ""
    DEBUG_AUTH: str = ""
    AUTH_EXCLUDED_PREFIXES: str = ""  # Comma-separated, replaces the defaults

    # ==========================================================================
    # PLATFORM SHELL
    # ==========================================================================
    NEXT_PUBLIC_SHELL_LOGIN_URL: str | None = None
    SHELL_LOGIN_URL: str | None = None
    HUB_URL: str = DEFAULT_HUB_URL

    class Config:
        env_file = ".env"
        extra = "ignore"

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    @property
    def supabase_url(self) -> str | None:
        return self.NEXT_PUBLIC_SUPABASE_URL or self.SUPABASE_URL or None

    @property
    def supabase_key(self) -> str | None:
        """Publishable key first, then the legacy anon keys."""
        return (
            self.NEXT_PUBLIC_SUPABASE_PUBLISHABLE_KEY
            or self.NEXT_PUBLIC_SUPABASE_ANON_KEY
            or self.SUPABASE_ANON_KEY
            or None
        )

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_key)

    @property
    def cookie_domain(self) -> str | None:
        return self.NEXT_PUBLIC_COOKIE_DOMAIN or self.COOKIE_DOMAIN or None

    @property
    def debug_auth(self) -> bool:
        return (self.NEXT_PUBLIC_DEBUG_AUTH or self.DEBUG_AUTH) == "1"

    @property
    def excluded_prefixes(self) -> tuple[str, ...]:
        if not self.AUTH_EXCLUDED_PREFIXES:
            return DEFAULT_EXCLUDED_PREFIXES
        return tuple(
            p.strip().lstrip("/")
            for p in self.AUTH_EXCLUDED_PREFIXES.split(",")
            if p.strip()
        )

    @property
    def shell_login_url(self) -> str:
        return self.NEXT_PUBLIC_SHELL_LOGIN_URL or self.SHELL_LOGIN_URL or DEFAULT_SHELL_LOGIN_URL

    def log_config(self) -> None:
        """Log configuration on startup."""
        logger.info(f"[VISO] Environment: {self.ENVIRONMENT} (production: {self.is_production})")
        logger.info(f"[VISO] App id: {self.APP_ID}")

        if not self.supabase_configured:
            logger.warning("[VISO] Warning: Supabase credentials not configured.")
            logger.warning(
                "[VISO] Set NEXT_PUBLIC_SUPABASE_URL and NEXT_PUBLIC_SUPABASE_ANON_KEY "
                "(or NEXT_PUBLIC_SUPABASE_PUBLISHABLE_KEY)"
            )

        if self.cookie_domain:
            logger.info(f"[VISO] Cookie domain override: {self.cookie_domain}")

        if self.debug_auth:
            logger.info("[VISO] Auth debug headers enabled")

        logger.info(f"[VISO] Edge gate exclusions: {', '.join(self.excluded_prefixes)}")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
