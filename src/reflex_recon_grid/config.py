"""Runtime settings for the reconciliation grid, read from the environment."""

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from reflex_recon_grid.exceptions import ConfigError

ENV_PREFIX = "RECON_GRID_"


class GridSettings(BaseSettings):
    """Connection and paging settings.

    Every field can be set with a ``RECON_GRID_<FIELD>`` variable or in a
    ``.env`` file; values are stripped and empty variables are ignored.

    Attributes:
        api_base_url: Scheme and host of the reconciliation API.
        api_version: Path segment inserted between host and endpoint.
        org_id: Sent as ``X-Org-ID`` when set.
        request_timeout: Per-request timeout in seconds.
        max_retry_attempts: Total attempts for retryable failures.
        retry_delay: Base delay in seconds; attempt *n* waits ``n * delay``.
        page_size: Rows per locally paginated page.
        platform: Default marketplace platform (``flipkart``, ``amazon``...).
        log_level: Level name passed to ``configure_logging``.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        str_strip_whitespace=True,
        extra="ignore",
        frozen=True,
    )

    api_base_url: str = Field(default="http://localhost:8080", min_length=1)
    api_version: str = Field(default="v1", min_length=1)
    org_id: str | None = None
    request_timeout: float = Field(default=30.0, ge=0)
    max_retry_attempts: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)
    page_size: int = Field(default=25, ge=0)
    platform: str | None = None
    log_level: str | None = None

    @field_validator("org_id", "platform", "log_level")
    @classmethod
    def _blank_is_unset(cls, value: str | None) -> str | None:
        return value or None

    def api_url(self, endpoint: str) -> str:
        """Join base URL, API version and *endpoint*."""
        base = self.api_base_url.rstrip("/")
        return f"{base}/{self.api_version}/{endpoint.lstrip('/')}"

    @classmethod
    def from_env(cls, *, dotenv: bool = True) -> "GridSettings":
        """Build settings from ``RECON_GRID_*`` environment variables.

        Args:
            dotenv: Also read a ``.env`` file (process variables win).

        Raises:
            ConfigError: If a variable fails validation; the message names
                the offending variable.
        """
        try:
            if dotenv:
                return cls()
            return cls(_env_file=None)
        except ValidationError as exc:
            raise ConfigError(_describe_errors(exc)) from exc


def _describe_errors(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        field = str(error["loc"][0]) if error["loc"] else "?"
        parts.append(f"{ENV_PREFIX}{field.upper()}: {error['msg']}")
    return "; ".join(parts)
