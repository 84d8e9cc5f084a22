"""Application configuration using pydantic-settings."""

import functools
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


def _find_project_root() -> Path:
    """Find project root by locating pyproject.toml."""
    current = Path(__file__).resolve()
    for parent in [current] + list(current.parents):
        if (parent / "pyproject.toml").exists():
            return parent
    return Path.cwd()


class YamlSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads from settings.yaml."""

    def get_field_value(self, field_name: str) -> tuple[Any, str, bool]:
        """Not used - we implement __call__ instead."""
        return None, "", False

    def __call__(self) -> dict[str, Any]:
        """Load settings from YAML file."""
        yaml_path = _find_project_root() / "config" / "settings.yaml"
        if not yaml_path.exists():
            return {}

        with open(yaml_path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        # Flatten nested structure to match Settings field names
        flattened = {}
        if 'server' in data:
            flattened['host'] = data['server'].get('host')
            flattened['port'] = data['server'].get('port')
        if 'storage' in data:
            flattened['data_dir'] = data['storage'].get('data_dir')
            flattened['applied_activity_window'] = (
                data['storage'].get('applied_activity_window')
            )
        if 'retry' in data:
            retry = data['retry']
            flattened['retry_max_attempts'] = retry.get('max_attempts')
            flattened['retry_base_delay_seconds'] = retry.get('base_delay_seconds')
            flattened['retry_max_jitter_seconds'] = retry.get('max_jitter_seconds')
            flattened['retry_timeout_seconds'] = retry.get('timeout_seconds')
        if 'insights' in data:
            flattened['recent_sessions_limit'] = data['insights'].get('recent_sessions_limit')
            flattened['insights_sessions_limit'] = (
                data['insights'].get('insights_sessions_limit')
            )

        # Remove None values
        return {k: v for k, v in flattened.items() if v is not None}


class Settings(BaseSettings):
    """Application settings loaded from environment and config files."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Storage
    data_dir: Path | None = Field(default=None)
    applied_activity_window: int = Field(default=200, ge=1)

    # Retry
    retry_max_attempts: int = Field(default=3, ge=1)
    retry_base_delay_seconds: float = Field(default=0.25, ge=0)
    retry_max_jitter_seconds: float = Field(default=0.25, ge=0)
    retry_timeout_seconds: float = Field(default=5.0, gt=0)

    # Insights
    recent_sessions_limit: int = Field(default=10, ge=1)
    insights_sessions_limit: int = Field(default=5, ge=1)

    # Paths
    project_root: Path = Field(default_factory=_find_project_root)

    @property
    def store_dir(self) -> Path:
        d = self.data_dir or self.project_root / "data" / "store"
        d.mkdir(parents=True, exist_ok=True)
        return d

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings sources to include YAML file.

        Priority order (highest to lowest):
        1. init_settings (arguments passed to Settings())
        2. env_settings (environment variables)
        3. dotenv_settings (.env file)
        4. YamlSettingsSource (settings.yaml)
        5. file_secret_settings
        """
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlSettingsSource(settings_cls),
            file_secret_settings,
        )


@functools.lru_cache
def get_settings() -> Settings:
    """Get application settings singleton."""
    return Settings()
