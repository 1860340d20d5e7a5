"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator

COOKIE_BROWSER_PREFIX = "browser:"


class AppConfig(BaseModel):
    """A validated configuration model for the application."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    # Download Settings
    download_path: str = ""
    proxy_url: str = ""
    cookie_source: str = ""
    max_concurrent_downloads: int = 3
    downloader_path: str = "yt-dlp"

    # Sync Settings
    sync_concurrency: int = 5
    default_date_range: str = "now-7days"
    quota_reset_offset_hours: int = -8

    # Internal fields not loaded from INI file
    config_path: str = Field(..., repr=False)

    @field_validator("max_concurrent_downloads", "sync_concurrency")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Ensures a reasonable number of concurrent workers."""
        if v < 1 or v > 16:
            raise ValueError("Concurrency limits must be between 1 and 16.")
        return v

    @field_validator("quota_reset_offset_hours")
    @classmethod
    def validate_offset(cls, v: int) -> int:
        if v < -12 or v > 14:
            raise ValueError("Quota reset offset must be a UTC offset between -12 and 14.")
        return v

    @field_validator("default_date_range")
    @classmethod
    def validate_date_range(cls, v: str) -> str:
        if v != "all" and not v.startswith("now-") and not v.rstrip("d").isdigit():
            raise ValueError(
                "Date range must be 'all', 'now-<n>days|months|year' or '<n>d'."
            )
        return v

    @field_validator("proxy_url")
    @classmethod
    def validate_proxy(cls, v: str) -> str:
        if v and "://" not in v:
            raise ValueError("Proxy URL must include a scheme, e.g. http://host:port.")
        return v

    @property
    def cookie_browser(self) -> str | None:
        """Browser name when cookies are read from a browser profile."""
        if self.cookie_source.startswith(COOKIE_BROWSER_PREFIX):
            return self.cookie_source[len(COOKIE_BROWSER_PREFIX) :] or None
        return None

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that are expected in the INI file."""
        internal_fields = {"config_path"}
        return {key for key in cls.model_fields if key not in internal_fields}
