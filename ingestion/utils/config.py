"""
Configuration loading for the sync pipeline

Values come from, in order of precedence:
    1. Environment variables (TI_<SECTION>_<FIELD>, e.g. TI_MISP_BASE_URL)
    2. The YAML configuration file
    3. Defaults

List values given through the environment are comma separated:
    TI_MISP_TYPES_TO_FETCH="ip-dst,sha256"
"""
from typing import Annotated, Any, Dict, List, Optional, Union
from urllib.parse import urlparse
import logging

import yaml
from pydantic import BaseModel, BeforeValidator, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from models.sync_run import RunMode
from utils.errors import ConfigError

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_EXPIRES_MONTHS = 6
DEFAULT_DAYS_TO_FETCH = 7
DEFAULT_TYPES_TO_FETCH = ["ip-dst", "hostname", "domain", "sha256"]
DEFAULT_DELETE_PAGE_SIZE = 5000
DEFAULT_API_VERSION = "2025-03-01"


def _split_list(value: Union[str, List[str], None]) -> List[str]:
    """Accept a comma separated string (environment) or a list (YAML)"""
    if value is None:
        return []
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return value


ListFromString = Annotated[List[str], BeforeValidator(_split_list)]


class LogSettings(BaseModel):
    level: str = Field(default=DEFAULT_LOG_LEVEL)


class MISPSettings(BaseModel):
    base_url: str
    access_key: str = Field(..., min_length=3)
    days_to_fetch: int = Field(default=DEFAULT_DAYS_TO_FETCH, ge=1)
    types_to_fetch: ListFromString = Field(default_factory=lambda: list(DEFAULT_TYPES_TO_FETCH))

    @field_validator('base_url')
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        parsed = urlparse(v)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ValueError(f'Invalid MISP base url: {v}')
        return v

    @field_validator('types_to_fetch')
    @classmethod
    def default_types_when_empty(cls, v: List[str]) -> List[str]:
        return v or list(DEFAULT_TYPES_TO_FETCH)


class SentinelSettings(BaseModel):
    app_id: str = Field(..., min_length=3)
    secret_key: str = Field(..., min_length=3)
    tenant_id: str = Field(..., min_length=3)
    subscription_id: str = Field(..., min_length=3)
    resource_group: str = Field(..., min_length=3)
    workspace_name: str = Field(..., min_length=3)
    expires_months: int = Field(default=DEFAULT_EXPIRES_MONTHS, ge=0)
    skip_delete: bool = Field(default=False)
    delete_page_size: int = Field(default=DEFAULT_DELETE_PAGE_SIZE, gt=0)
    api_version: str = Field(default=DEFAULT_API_VERSION)


class RunSettings(BaseModel):
    mode: RunMode = Field(default=RunMode.CONCURRENT)


class SyncSettings(BaseSettings):
    """Validated configuration for one sync run"""

    model_config = SettingsConfigDict(
        env_prefix="TI_",
        env_nested_delimiter="_",
        env_nested_max_split=1,
        enable_decoding=False,
        extra="ignore",
    )

    log: LogSettings = Field(default_factory=LogSettings)
    misp: MISPSettings
    mssentinel: SentinelSettings
    run: RunSettings = Field(default_factory=RunSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment wins over the values read from the YAML file
        return (env_settings, init_settings)

    @property
    def misp_hostname(self) -> str:
        """Hostname of the MISP instance, used as indicator source"""
        hostname = urlparse(self.misp.base_url).hostname
        return hostname or self.misp.base_url

    @property
    def sweep_enabled(self) -> bool:
        return self.mssentinel.expires_months > 0 and not self.mssentinel.skip_delete


def _read_yaml(path: str) -> Dict[str, Any]:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"failed to load configuration file at '{path}': {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"failed to parse configuration: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"configuration file '{path}' must contain a mapping")
    return data


def load_settings(path: Optional[str] = None) -> SyncSettings:
    """
    Load and validate configuration

    Args:
        path: Optional YAML file; environment variables override its values

    Returns:
        Validated SyncSettings

    Raises:
        ConfigError: If the file cannot be read or a value is invalid
    """
    logger = logging.getLogger(__name__)
    data: Dict[str, Any] = {}

    if path:
        logger.info(f"Loading configuration file {path}")
        data = _read_yaml(path)

    try:
        return SyncSettings(**data)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        raise ConfigError(f"invalid configuration: {errors}") from e
