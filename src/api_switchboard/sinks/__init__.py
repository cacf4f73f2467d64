"""Sinks for transported data."""

from api_switchboard.core.factory import SinkFactory
from api_switchboard.core.types import SinkType
from api_switchboard.sinks.spreadsheet import SpreadsheetKeySource, SpreadsheetSink
from api_switchboard.sinks.webhook import WebhookSink

SinkFactory.register_sink(SinkType.SPREADSHEET, SpreadsheetSink)
SinkFactory.register_sink(SinkType.WEBHOOK, WebhookSink)

# Export sink classes
__all__ = [
    "SpreadsheetKeySource",
    "SpreadsheetSink",
    "WebhookSink"
]
