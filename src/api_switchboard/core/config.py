import os
from typing import Any, Dict, Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field

from api_switchboard.core.factory import resolve_env
from api_switchboard.core.governor import RateLimitConfig
from api_switchboard.core.models import DEFAULT_PAGE_CAP, EnrichmentOptions
from api_switchboard.core.types import SinkType

DEFAULT_CONFIG_PATH = 'config/config.yaml'


class ServiceConfig(BaseModel):
    """Service identity for the control API"""
    name: str = "API Switchboard"
    version: str = "1.0.0"
    docs_enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080


class HttpConfig(BaseModel):
    timeout_seconds: float = 30               # Total timeout per source request


class TransportConfig(BaseModel):
    pause_poll_interval_ms: int = 500         # How often a paused job checks for resume
    default_max_pages: int = DEFAULT_PAGE_CAP  # Page cap for runs without an explicit maxPages


class SpreadsheetConfig(BaseModel):
    enabled: bool = True                      # Disabled sinks are refused by the factory
    web_app_url: Optional[str] = None         # Deployed receiver URL
    sheet_name: str = "API_Data"
    timeout_seconds: float = 30


class WebhookConfig(BaseModel):
    enabled: bool = True
    url: Optional[str] = None
    source: str = "API Switchboard"           # Value of the envelope's "source" field
    timeout_seconds: float = 15


class AppConfig(BaseModel):
    """Complete application configuration"""
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    spreadsheet: SpreadsheetConfig = Field(default_factory=SpreadsheetConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    enrichment: EnrichmentOptions = Field(default_factory=EnrichmentOptions)

    def sink_settings(self, sink_type: str) -> Dict[str, Any]:
        """Configured settings for a sink type, as passed to the sink factory."""
        if sink_type == SinkType.SPREADSHEET:
            return self.spreadsheet.model_dump()
        if sink_type == SinkType.WEBHOOK:
            return self.webhook.model_dump()
        return {}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'AppConfig':
        return cls.model_validate(resolve_env(data or {}))


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from YAML, falling back to defaults if the file is missing."""
    config_path = path or os.getenv('CONFIG_PATH', DEFAULT_CONFIG_PATH)
    try:
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        logger.warning(f"Config file not found at {config_path}, using defaults")
        return AppConfig()
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse config {config_path}: {str(e)}")
        raise

    logger.info(f"Loaded configuration from {config_path}")
    return AppConfig.from_dict(data)
