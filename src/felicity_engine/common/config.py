"""Felicity-Engine configuration via pydantic-settings."""

import json
import warnings
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Values shipped for local runs; refused outside development.
_DEV_ONLY_VALUES = {
    "secret_key": "felicity-dev-secret",
    "hmac_key": "felicity-dev-ticket-signing",
    "api_key": "felicity-dev-organizer",
}


class FelicitySettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FELICITY_")

    environment: str = "development"
    log_level: str = "INFO"

    # Signing material for ticket payloads and attendance audit entries.
    secret_key: str = _DEV_ONLY_VALUES["secret_key"]
    hmac_key: str = _DEV_ONLY_VALUES["hmac_key"]
    # Optional JSON keyring {"<version>": "<key>"}; overrides hmac_key when set.
    hmac_keys: str = ""

    db_url: str = "sqlite+aiosqlite:///./data/felicity.db"
    db_busy_timeout: int = Field(30, ge=0)

    # HTTP surface
    api_title: str = "Felicity-Engine"
    api_version: str = "0.1.0"
    api_prefix: str = ""
    api_key: str = _DEV_ONLY_VALUES["api_key"]
    host: str = "0.0.0.0"
    port: int = 8080
    cors_origins: list[str] = ["http://localhost:3000"]

    # Admission and fulfilment policy
    release_after_event_start: bool = False
    ticket_prefix: str = Field("TKT", min_length=1, max_length=8)
    ticket_max_attempts: int = Field(5, ge=1)
    default_max_file_size_mb: int = Field(5, ge=1)

    # Webhook sink
    webhook_max_retries: int = Field(3, ge=0)
    webhook_timeout_seconds: int = Field(10, ge=1)

    @field_validator("hmac_keys")
    @classmethod
    def _keyring_is_json_object(cls, value: str) -> str:
        if not value:
            return value
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as exc:
            raise ValueError(f"hmac_keys is not valid JSON: {exc.msg}") from exc
        if not isinstance(parsed, dict) or not parsed:
            raise ValueError('hmac_keys must be a non-empty object like {"0": "key"}')
        for version in parsed:
            if not str(version).isdigit():
                raise ValueError(f"hmac_keys version {version!r} is not a non-negative integer")
        return value

    @property
    def is_sqlite(self) -> bool:
        return self.db_url.startswith("sqlite")

    @property
    def hmac_keyring(self) -> dict[int, str]:
        """Signing keys by version. Without a keyring, hmac_key is version 0."""
        if self.hmac_keys:
            return {int(v): k for v, k in json.loads(self.hmac_keys).items()}
        return {0: self.hmac_key}

    @property
    def current_hmac_version(self) -> int:
        return max(self.hmac_keyring)

    @property
    def current_hmac_key(self) -> str:
        return self.hmac_keyring[self.current_hmac_version]

    def validate_for_production(self) -> None:
        """Refuse development signing material outside development; warn inside it."""
        still_default = sorted(
            name for name, dev_value in _DEV_ONLY_VALUES.items()
            if getattr(self, name) == dev_value
        )
        if not still_default:
            return

        env_vars = ", ".join(f"FELICITY_{name.upper()}" for name in still_default)
        if self.environment != "development":
            raise RuntimeError(
                f"Refusing to start in '{self.environment}' with development values for {env_vars}"
            )
        warnings.warn(f"Development values in use for {env_vars}", UserWarning, stacklevel=2)


@lru_cache
def get_settings() -> FelicitySettings:
    settings = FelicitySettings()
    settings.validate_for_production()
    return settings
