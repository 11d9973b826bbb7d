"""Configuration management for sheetmail."""

import json
from pathlib import Path
from typing import Optional, Dict, Any, Tuple, Type
from functools import lru_cache

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from .exceptions import ConfigurationError


class ColumnMap(BaseModel):
    """Header names of the columns in the source sheet."""

    primary_recipients: str = Field("Emails", description="Column holding the recipient addresses")
    backup_recipient: str = Field("Emails backup", description="Column holding the backup address")
    subject: str = Field("Subject", description="Column holding the message subject")
    links: str = Field("Links", description="Column holding related links")
    body: str = Field("Body", description="Column holding the message body")
    cc_recipients: str = Field("cc", description="Column holding CC addresses")
    status: str = Field("Status", description="Column holding the delivery status")


class SheetsConfig(BaseModel):
    """Google Sheets values API configuration."""

    api_key: Optional[str] = Field(None, description="API key appended to values requests")
    spreadsheet_id: Optional[str] = Field(None, description="Google Sheet ID (or URL) to read from")
    sheet_name: str = Field("Sheet1", description="Sheet (range) to read")
    base_url: str = Field(
        "https://sheets.googleapis.com/v4/spreadsheets",
        description="Base URL of the values API"
    )
    timeout: float = Field(30.0, description="Timeout for the values request in seconds")
    columns: ColumnMap = Field(default_factory=ColumnMap)


class DispatchConfig(BaseModel):
    """Dispatch endpoint configuration."""

    endpoint: str = Field(
        "http://localhost/redbox/send_mail.php",
        description="URL of the script that delivers messages"
    )
    token_url: Optional[str] = Field(None, description="Explicit anti-forgery token URL")
    token_script: str = Field("get_csrf.php", description="Token script colocated with the endpoint")
    token_timeout: float = Field(10.0, description="Timeout for token requests in seconds")
    send_timeout: float = Field(30.0, description="Timeout for each submission in seconds")
    probe_timeout: float = Field(5.0, description="Timeout for the connectivity probe in seconds")
    probe_preview_chars: int = Field(200, description="Characters of probe body to report")
    throttle_delay: float = Field(0.5, description="Pause between consecutive batch sends in seconds")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field("INFO", description="Logging level")
    format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string"
    )
    file_path: Optional[str] = Field(None, description="Path to log file")
    max_file_size: int = Field(10 * 1024 * 1024, description="Maximum log file size in bytes")
    backup_count: int = Field(5, description="Number of backup log files to keep")
    console_output: bool = Field(True, description="Enable console logging")


class Settings(BaseSettings):
    """Main application settings."""

    # Application settings
    app_name: str = Field("sheetmail", description="Application name")
    debug: bool = Field(False, description="Enable debug mode")

    # Component configurations
    sheets: SheetsConfig = Field(default_factory=SheetsConfig)
    dispatch: DispatchConfig = Field(default_factory=DispatchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_prefix="SHEETMAIL_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # Environment wins over values passed in from the config file
        return env_settings, init_settings, dotenv_settings, file_secret_settings


def _load_config_file(config_file: Path) -> Dict[str, Any]:
    """Load configuration from YAML or JSON file."""
    if not config_file.exists():
        return {}

    with open(config_file, 'r') as f:
        if config_file.suffix.lower() in ['.yaml', '.yml']:
            return yaml.safe_load(f) or {}
        elif config_file.suffix.lower() == '.json':
            return json.load(f)
        else:
            raise ConfigurationError(
                f"Unsupported config file format: {config_file.suffix}",
                context={"config_file": str(config_file)}
            )


@lru_cache()
def load_settings(
    config_dir: Optional[Path] = None,
    env_file: Optional[str] = None,
    config_file: Optional[str] = None
) -> Settings:
    """
    Load application settings from multiple sources.

    Sources are loaded in order of precedence (later sources override earlier):
    1. Default values
    2. Configuration file (YAML/JSON)
    3. Environment file (.env)
    4. Environment variables

    Args:
        config_dir: Directory containing config files (default: current directory)
        env_file: Path to environment file (default: .env in config_dir)
        config_file: Path to configuration file (default: config.yaml in config_dir)

    Returns:
        Loaded settings instance

    Raises:
        ConfigurationError: If a source cannot be parsed or validated
    """
    if config_dir is None:
        config_dir = Path.cwd()
    config_dir = Path(config_dir)

    env_path = Path(env_file) if env_file else config_dir / ".env"
    config_path = Path(config_file) if config_file else config_dir / "config.yaml"

    # .env never overrides variables already present in the process environment
    if env_path.exists():
        load_dotenv(env_path, override=False)

    try:
        file_config = _load_config_file(config_path)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f"Failed to parse config file: {e}",
            cause=e,
            context={"config_file": str(config_path)}
        )

    try:
        return Settings(**file_config)
    except Exception as e:
        raise ConfigurationError(
            f"Failed to load configuration: {e}",
            cause=e,
            context={"config_file": str(config_path), "env_prefix": "SHEETMAIL_"}
        )
