import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import Field
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)
from sqlalchemy.engine import URL


class SecretFileSettingsSource(PydanticBaseSettingsSource):
    """Reads `<secrets_dir>/<ALIAS>.txt` files mounted by the secret manager."""

    def __init__(self, settings_cls: type[BaseSettings], secrets_dir: str) -> None:
        super().__init__(settings_cls)
        self.secrets_dir = Path(secrets_dir)

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        name = field.alias or field_name
        path = self.secrets_dir / f"{name}.txt"
        if not path.is_file():
            return None, field_name, False
        return path.read_text(encoding="utf-8").strip(), field_name, False

    def __call__(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if not self.secrets_dir.is_dir():
            return data
        for field_name, field in self.settings_cls.model_fields.items():
            value, key, _ = self.get_field_value(field, field_name)
            if value is not None:
                data[field.alias or key] = value
        return data


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    database_url: str = Field(default="", alias="DATABASE_URL")
    db_host: str = Field(default="localhost", alias="DB_HOST")
    db_port: int = Field(default=3306, alias="DB_PORT")
    db_user: str = Field(default="root", alias="DB_USER")
    db_pass: str = Field(default="", alias="DB_PASS")
    db_name: str = Field(default="", alias="DB_NAME")

    jwt_secret: str = Field(default="", alias="JWT_SECRET")
    jwt_exp_minutes: int = Field(default=60 * 24, alias="JWT_EXP_MINUTES")

    google_client_id: str = Field(default="", alias="GOOGLE_CLIENT_ID")
    google_client_secret: str = Field(default="", alias="GOOGLE_CLIENT_SECRET")
    google_redirect_uri: str = Field(
        default="http://localhost:8000/api/auth/google/callback",
        alias="GOOGLE_REDIRECT_URI",
    )

    service_name: str = Field(default="learn-status-service", alias="SERVICE_NAME")
    service_version: str = Field(default="1.0.0", alias="SERVICE_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")

    otel_enabled: bool = Field(default=False, alias="OTEL_ENABLED")
    otel_collector_url: str = Field(default="http://localhost:4318", alias="OTEL_COLLECTOR_URL")
    otel_metric_export_interval_ms: int = Field(default=60_000, alias="OTEL_METRIC_EXPORT_INTERVAL_MS")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    enable_metrics_endpoint: bool = Field(default=True, alias="ENABLE_METRICS_ENDPOINT")

    static_dir: str = Field(default="static", alias="STATIC_DIR")
    views_dir: str = Field(default="views", alias="VIEWS_DIR")
    profile_dir: str = Field(default="profile", alias="PROFILE_DIR")
    public_dir: str = Field(default="public", alias="PUBLIC_DIR")

    git_commit_hash: str = Field(default="", alias="GIT_COMMIT_HASH")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # The secrets dir itself can only come from the process environment.
        secrets_dir = os.environ.get("SECRETS_DIR", "/var/secrets")
        return (
            init_settings,
            SecretFileSettingsSource(settings_cls, secrets_dir),
            env_settings,
            dotenv_settings,
        )

    @property
    def sqlalchemy_url(self) -> str | URL:
        if self.database_url:
            return self.database_url
        return URL.create(
            "mysql+pymysql",
            username=self.db_user,
            password=self.db_pass or None,
            host=self.db_host,
            port=self.db_port,
            database=self.db_name or None,
        )

    @property
    def missing_required(self) -> list[str]:
        missing: list[str] = []
        if not self.jwt_secret:
            missing.append("JWT_SECRET")
        if not self.database_url:
            for alias, value in (("DB_HOST", self.db_host), ("DB_USER", self.db_user), ("DB_NAME", self.db_name)):
                if not value:
                    missing.append(alias)
        return missing

    @property
    def google_oauth_configured(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)

    @property
    def static_path(self) -> Path:
        return Path(self.static_dir)

    @property
    def views_path(self) -> Path:
        return Path(self.views_dir)

    @property
    def profile_path(self) -> Path:
        return Path(self.profile_dir)

    @property
    def public_path(self) -> Path:
        return Path(self.public_dir)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
