from __future__ import annotations

import re
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import (
    BaseSettings,
    DotEnvSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from sqlgate.config import get_paths

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_.\[\]]+$")


def config_yaml_path() -> Path:
    return get_paths().config_yaml


def _looks_like_dotenv(path: Path) -> bool:
    if not path.exists() or not path.is_file():
        return False
    try:
        for raw_line in path.read_text().splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue
            return "=" in line and ":" not in line.split("=", 1)[0]
    except OSError:
        return False
    return False


class GatewaySettings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore", env_prefix="SQLGATE_")

    system_database: str = "master"
    catalog_database: str = "Opciones"
    user_table: str = "dbo.GENUsuario"
    consulta_table: str = "dbo.GENConsultas"

    probe_connect_timeout: int = Field(default=7, ge=1)
    probe_request_timeout: int = Field(default=7, ge=1)
    query_connect_timeout: int = Field(default=15, ge=1)
    query_request_timeout: int = Field(default=30, ge=1)

    encrypt: bool = False
    require_unique_login: bool = False
    clear_affinity_on_logout: bool = True
    default_codigo_aplicacion: str = "8"

    @field_validator("system_database", "catalog_database", "user_table", "consulta_table")
    @classmethod
    def _check_identifier(cls, value: str) -> str:
        cleaned = value.strip()
        if not IDENTIFIER_PATTERN.match(cleaned):
            raise ValueError(f"invalid SQL identifier: {value!r}")
        return cleaned

    @property
    def user_table_fqname(self) -> str:
        return f"{self.catalog_database}.{self.user_table}"

    @property
    def consulta_table_fqname(self) -> str:
        return f"{self.catalog_database}.{self.consulta_table}"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        yaml_path = config_yaml_path()
        if _looks_like_dotenv(yaml_path):
            file_config_settings: PydanticBaseSettingsSource = DotEnvSettingsSource(
                settings_cls,
                env_file=yaml_path,
            )
        else:
            file_config_settings = YamlConfigSettingsSource(settings_cls, yaml_file=yaml_path)
        return (
            file_secret_settings,
            file_config_settings,
            dotenv_settings,
            env_settings,
            init_settings,
        )


def load_settings(**overrides: object) -> GatewaySettings:
    """Build settings; keyword overrides are the lowest-precedence source.

    Sources are consulted in order: secrets dir, the config file, `.env`,
    `SQLGATE_*` environment variables, then ``overrides``. The first source
    that defines a field wins, so an override only applies to fields none of
    the other sources set.
    """
    return GatewaySettings(**overrides)
