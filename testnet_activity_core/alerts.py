# testnet_activity_core/alerts.py
"""
Fire-and-forget operator alerts. `notify` never raises: a broken alert
channel must not stop the activity loop.
"""
import abc
import asyncio
import logging
from typing import List, Optional, Sequence

import requests

from . import config as core_config

logger = logging.getLogger(__name__)

SEVERITY_LEVELS = {
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class AlertSink(abc.ABC):
    @abc.abstractmethod
    async def notify(self, message: str, severity: str = "info") -> None:
        pass


class LoggingAlertSink(AlertSink):
    """Writes alerts to the log at a level matching their severity."""

    async def notify(self, message: str, severity: str = "info") -> None:
        logger.log(SEVERITY_LEVELS.get(severity, logging.INFO), f"ALERT DISPATCH: {message}")


class TelegramAlertSink(AlertSink):
    """
    Posts alerts to a Telegram chat through the Bot API.

    The blocking `requests` call runs in a worker thread so the event loop
    keeps going while Telegram answers.
    """
    API_URL = "https://api.telegram.org/bot{token}/sendMessage"

    def __init__(self, bot_token: str, chat_id: str, timeout: float = core_config.TELEGRAM_TIMEOUT_SECONDS):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.timeout = timeout

    def _post(self, text: str) -> None:
        response = requests.post(
            self.API_URL.format(token=self.bot_token),
            json={"chat_id": self.chat_id, "text": text, "parse_mode": "Markdown"},
            headers={"Content-Type": "application/json"},
            timeout=self.timeout,
        )
        response.raise_for_status()

    async def notify(self, message: str, severity: str = "info") -> None:
        text = f"*Testnet Activity Alert ({severity.upper()})*\n\n{message}"
        try:
            await asyncio.to_thread(self._post, text)
        except requests.exceptions.Timeout:
            logger.error("Timeout while sending Telegram alert.")
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to send Telegram alert: {e}")


class CompositeAlertSink(AlertSink):
    """Fans an alert out to every child sink, isolating their failures from each other."""

    def __init__(self, sinks: Sequence[AlertSink]):
        self.sinks: List[AlertSink] = list(sinks)

    async def notify(self, message: str, severity: str = "info") -> None:
        for sink in self.sinks:
            try:
                await sink.notify(message, severity)
            except Exception as e:
                logger.error(f"Alert sink {type(sink).__name__} failed: {e}")


def build_alert_sink(bot_token: Optional[str] = None, chat_id: Optional[str] = None) -> AlertSink:
    """Logging sink, plus Telegram when both the bot token and the chat id are set."""
    bot_token = core_config.TELEGRAM_BOT_TOKEN if bot_token is None else bot_token
    chat_id = core_config.TELEGRAM_CHAT_ID if chat_id is None else chat_id

    sinks: List[AlertSink] = [LoggingAlertSink()]
    if bot_token and chat_id:
        sinks.append(TelegramAlertSink(bot_token, chat_id))
    return CompositeAlertSink(sinks)
