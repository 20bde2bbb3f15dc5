"""Runtime configuration for memory estimation.

Every setting can be overridden via environment variables with the
GGUF_ESTIMATOR_ prefix (GGUF_ESTIMATOR_TIMEOUT, GGUF_ESTIMATOR_CHUNK_SIZE, ...).
The context length is read from GGUF_ESTIMATOR_CONTEXT, and the Hub
credentials from the standard HF_TOKEN and HF_ENDPOINT variables.
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .httpfile import DEFAULT_CHUNK_SIZE, DEFAULT_TIMEOUT

DEFAULT_CONTEXT_LENGTH = 16384
DEFAULT_REVISION = "main"

ENV_PREFIX = "GGUF_ESTIMATOR_"
TOKEN_ENV = "HF_TOKEN"
ENDPOINT_ENV = "HF_ENDPOINT"
TIMEOUT_ENV = "GGUF_ESTIMATOR_TIMEOUT"
CONTEXT_ENV = "GGUF_ESTIMATOR_CONTEXT"


class EstimatorConfig(BaseSettings):
    """Settings shared by every estimate request."""

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        case_sensitive=False,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    context_length: int = Field(
        default=DEFAULT_CONTEXT_LENGTH,
        gt=0,
        validation_alias=CONTEXT_ENV,
        description="Target context in tokens",
    )
    chunk_size: int = Field(
        default=DEFAULT_CHUNK_SIZE,
        gt=0,
        description="Bytes requested per ranged fetch",
    )
    timeout: float = Field(
        default=DEFAULT_TIMEOUT,
        gt=0,
        description="Per-request timeout in seconds",
    )
    revision: str = DEFAULT_REVISION
    endpoint: Optional[str] = Field(default=None, validation_alias=ENDPOINT_ENV)
    token: Optional[str] = Field(default=None, validation_alias=TOKEN_ENV)

    @field_validator("endpoint")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        return v.rstrip("/") if v else None

    @field_validator("token")
    @classmethod
    def empty_token_is_none(cls, v: Optional[str]) -> Optional[str]:
        return v or None

    def with_overrides(self, **changes) -> EstimatorConfig:
        """Return a validated copy with every non-None keyword applied."""
        values = self.model_dump()
        values.update({k: v for k, v in changes.items() if v is not None})
        return type(self)(**values)
