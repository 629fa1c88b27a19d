"""
Service settings shared by the sender, the poller and the batch client.
"""

from __future__ import annotations

import os
import typing as t

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

ENV_PREFIX = "COGBATCH_"
SUBSCRIPTION_KEY_ENV_VAR = f"{ENV_PREFIX}SUBSCRIPTION_KEY"
DEFAULT_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


class ServiceSettings(BaseModel):
    """
    Connection, retry and polling settings for one remote service.

    Durations are expressed in seconds.
    """

    model_config = ConfigDict(frozen=True)

    subscription_key: str | None = None
    location: str | None = None
    base_url: str | None = None
    max_polling_tries: int = Field(default=1000, ge=1)
    polling_delay: float = Field(default=0.3, ge=0)
    backoff_schedule: tuple[float, ...] = (0.1, 0.5, 1.0)
    retryable_status_codes: frozenset[int] = DEFAULT_RETRYABLE_STATUS_CODES
    concurrency: int = Field(default=1, ge=1)
    batch_size: int = Field(default=10, ge=1)
    timeout: float = Field(default=60.0, gt=0)
    language: str | None = "en"

    @field_validator("backoff_schedule")
    @classmethod
    def check_backoff_schedule(cls, value: tuple[float, ...]) -> tuple[float, ...]:
        if any(delay < 0 for delay in value):
            raise ValueError("backoff delays must be non-negative")
        return value

    @field_validator("base_url")
    @classmethod
    def strip_base_url(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip().rstrip("/")
        if not stripped:
            raise ValueError("base_url cannot be empty")
        return stripped

    @classmethod
    def from_env(cls, **overrides: t.Any) -> ServiceSettings:
        """
        Build settings from ``COGBATCH_*`` environment variables.

        A ``.env`` file in the working directory is loaded first. Explicit
        keyword overrides win over the environment.

        Parameters
        ----------
        **overrides : typing.Any
            Field values taking precedence over the environment.

        Returns
        -------
        ServiceSettings
            Validated settings.
        """
        load_dotenv()
        values: dict[str, t.Any] = {}
        for name in (
            "subscription_key",
            "location",
            "base_url",
            "max_polling_tries",
            "polling_delay",
            "concurrency",
            "batch_size",
            "timeout",
            "language",
        ):
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw:
                values[name] = raw
        schedule = os.getenv(f"{ENV_PREFIX}BACKOFF_SCHEDULE")
        if schedule:
            values["backoff_schedule"] = tuple(
                float(part) for part in schedule.split(",") if part.strip()
            )
        values.update(overrides)
        return cls.model_validate(obj=values)

    def resolve_base_url(self) -> str:
        """
        Return the service root URL without a trailing slash.

        Raises
        ------
        ValueError
            If neither ``base_url`` nor ``location`` is configured.
        """
        if self.base_url:
            return self.base_url
        if self.location:
            return f"https://{self.location}.api.cognitive.microsoft.com"
        raise ValueError("Either base_url or location must be configured")

    def get_subscription_key(self) -> str:
        key = self.subscription_key or os.getenv(SUBSCRIPTION_KEY_ENV_VAR)
        if not key:
            raise ValueError(
                f"Subscription key not found. Either set {SUBSCRIPTION_KEY_ENV_VAR} in the environment variables or provide it through the subscription_key setting."
            )
        return key
