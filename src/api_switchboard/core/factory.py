import os
import re
from typing import Any, Dict, Optional, Type

from loguru import logger

from api_switchboard.core.errors import InitializationError
from api_switchboard.core.sink import BaseSink, SinkConfig

# ${env:NAME} or ${env:NAME:default}
ENV_REFERENCE = re.compile(r"^\$\{env:([A-Za-z_][A-Za-z0-9_]*)(?::(.*))?\}$")


def resolve_env(value: Any) -> Any:
    """Recursively resolve ``${env:...}`` references in configuration values."""
    if isinstance(value, str):
        match = ENV_REFERENCE.match(value.strip())
        if not match:
            return value
        name, default = match.group(1), match.group(2)
        resolved = os.getenv(name, default)
        if resolved is None:
            logger.warning(f"Environment variable {name} is not set")
        return resolved
    elif isinstance(value, dict):
        return {k: resolve_env(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [resolve_env(v) for v in value]
    return value


class SinkFactory:
    """Registry of sink types."""

    _sink_handlers: Dict[str, Type[BaseSink]] = {}

    @classmethod
    def register_sink(cls, type_name: str, handler_class: Type[BaseSink]) -> None:
        """Register a sink type."""
        cls._sink_handlers[type_name.lower()] = handler_class

    @classmethod
    def registered_types(cls):
        return sorted(cls._sink_handlers)

    @classmethod
    def create_sink(
        cls,
        sink_type: str,
        config: Optional[Dict[str, Any]] = None,
        overrides: Optional[Dict[str, Any]] = None
    ) -> BaseSink:
        """Create a sink from its type name and configuration."""
        settings = resolve_env({**(config or {}), **(overrides or {})})
        handler_class = cls._sink_handlers.get(sink_type.lower())
        if not handler_class:
            raise InitializationError(f"Unsupported sink type: {sink_type}")

        # Only configuration switches a sink off; request overrides cannot
        enabled = resolve_env((config or {}).get('enabled', True))
        settings.pop('enabled', None)
        sink_config = SinkConfig(
            type=sink_type.lower(),
            enabled=True if enabled is None else enabled,
            config=settings
        )
        if not sink_config.enabled:
            raise InitializationError(f"Sink {sink_type} is disabled")
        return handler_class(sink_config)
