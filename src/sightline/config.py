"""Application configuration via environment variables and .env file."""

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings
from pydantic_settings.sources import DotEnvSettingsSource, PydanticBaseSettingsSource

# Path to .env file (patch in tests to use tmp_path / ".env")
_ENV_FILE: Path = Path(".env")


class Settings(BaseSettings):
    model_config = {
        "env_prefix": "SIGHTLINE_",
        "env_file_encoding": "utf-8",
    }

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Load .env from _ENV_FILE (patchable in tests)
        return (
            init_settings,
            env_settings,
            DotEnvSettingsSource(
                settings_cls,
                env_file=_ENV_FILE,
                env_file_encoding="utf-8",
            ),
            file_secret_settings,
        )

    # Device history store
    db_path: Path = Path("./data/sightline.db")
    store_backend: str = "sqlite"
    store_workers: int = 1

    # Logging
    log_level: str = "info"

    # Discovery backends: "bleak" | "mock" | "none" and "zeroconf" | "mock" | "none"
    radio_mode: str = "none"
    network_mode: str = "none"

    # Sessions
    scan_timeout: float = 15.0  # seconds before a scan/browse auto-stops
    resolve_timeout: float = 5.0  # seconds allowed per network peer resolution

    # DNS-SD
    service_type: str = "_sightline._tcp.local."
    advertise_name: str | None = None  # defaults to the host name

    # History
    search_debounce: float = 0.25  # seconds

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    @field_validator("radio_mode", "network_mode", "store_backend", mode="before")
    @classmethod
    def normalize_mode(cls, v: object) -> str:
        """Trim and lower-case backend selectors; empty means "none"."""
        if v is None:
            return "none"
        value = str(v).strip().lower()
        return value or "none"

    @field_validator("service_type")
    @classmethod
    def ensure_fqdn(cls, v: str) -> str:
        """DNS-SD type names are fully qualified (trailing dot)."""
        v = v.strip()
        return v if v.endswith(".") else v + "."


def load_config() -> Settings:
    """Load configuration from .env and environment (env overrides .env)."""
    return Settings()


settings = Settings()
