"""Library configuration with validation."""

from pydantic_settings import BaseSettings
from pydantic import Field, field_validator


class Settings(BaseSettings):
    """
    docvault settings.

    Every value can be overridden with a ``DOCVAULT_``-prefixed environment
    variable or a ``.env`` file, e.g. ``DOCVAULT_API_URL``.
    """

    # Document service connection
    api_url: str = Field(
        default="http://127.0.0.1:8003",
        description="Base URL of the document/folder/template service"
    )
    api_token: str = Field(
        default="",
        description="Bearer token sent with every request (empty = anonymous)"
    )
    agency_id: str = Field(
        default="",
        description="Tenant agency id sent as the x-agency-id header (empty = omitted)"
    )
    api_timeout: float = Field(
        default=30.0,
        description="Request timeout in seconds"
    )

    # Retry configuration for idempotent requests (GET/PUT/DELETE).
    # Delays grow exponentially: base, 2*base, 4*base...
    max_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts per idempotent request before giving up"
    )
    retry_base_delay: float = Field(
        default=1.0,
        ge=0,
        description="Seconds to wait before the first retry"
    )

    # Tree behaviour
    show_root_documents: bool = Field(
        default=False,
        description="Attach documents without a folder to the root node"
    )
    max_ancestor_depth: int = Field(
        default=64,
        ge=1,
        description="Upper bound on parent hops when deduplicating shared items"
    )
    mutation_history_limit: int = Field(
        default=50,
        ge=0,
        description="Finished mutations kept in DocumentTreeService.mutations"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_format: str = Field(
        default="json",
        description="Log output format: 'json' for structured, 'text' for human-readable"
    )

    @field_validator('api_url')
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        v = v.strip().rstrip('/')
        if not v.startswith(("http://", "https://")):
            raise ValueError("api_url must start with http:// or https://")
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard Python logging levels."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in ('json', 'text'):
            raise ValueError("log_format must be 'json' or 'text'")
        return v_lower

    class Config:
        """Pydantic configuration."""
        env_prefix = "DOCVAULT_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = Settings()
