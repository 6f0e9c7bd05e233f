"""Application settings loaded from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from environment variables prefixed with DW_."""

    # Database
    database_url: str = ""

    # Hashing salts. The global salt is shared by every tenant so that the
    # same raw identifier hashes identically across companies.
    global_salt: str = ""
    company_salts: dict[str, str] = {}
    salt_version: int = 1

    # Matching configuration (JSON file); empty means built-in defaults
    matching_config_path: str = ""

    # Batch run tuning
    batch_size: int = 200
    max_workers: int = 4
    call_timeout_seconds: float = 10.0
    retry_attempts: int = 3
    retry_backoff_seconds: float = 0.5

    # HR connector
    connector_base_url: str = ""
    connector_token: str = ""

    model_config = {"env_file": ".env", "env_prefix": "DW_"}


def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()
