"""Notification sender with Telegram support and throttling.

Sends sync alerts via Telegram with per-alert-key throttling to avoid spam.
Delivery is fire-and-forget: messages go out from a background thread and
delivery failures are logged, never raised.
"""

import logging
import threading
from datetime import datetime, UTC, timedelta
from enum import StrEnum
from typing import Optional

import telebot

from trade_sync.config import TelegramConfig

logger = logging.getLogger(__name__)

# Throttle: max 1 alert per key per this many seconds
_DEFAULT_THROTTLE_SECONDS = 60


class AlertKind(StrEnum):
    SYNC_FAILED = "SYNC_FAILED"
    REPEATED_FAILURES = "REPEATED_FAILURES"
    RECONCILIATION_MISMATCH = "RECONCILIATION_MISMATCH"
    DATA_QUALITY = "DATA_QUALITY"


class Notifier:
    """Sends alerts via Telegram with throttling.

    Thread-safe: can be called from fetch threads and asyncio tasks.
    If no Telegram config is provided, acts as a no-op (log-only).
    """

    def __init__(
        self,
        telegram_config: Optional[TelegramConfig] = None,
        throttle_seconds: int = _DEFAULT_THROTTLE_SECONDS,
    ):
        self._telegram_config = telegram_config
        self._throttle_seconds = throttle_seconds
        self._bot = None
        self._lock = threading.Lock()
        # Tracks last send time per alert key for throttling
        self._last_sent: dict[str, datetime] = {}

        if telegram_config:
            try:
                self._bot = telebot.TeleBot(telegram_config.bot_token)
                logger.info("Telegram notifier initialized")
            except Exception as e:
                logger.warning(f"Failed to initialize Telegram bot: {e}")

    def notify(self, account_id: str, kind: AlertKind, details: Optional[dict] = None) -> None:
        """Send a sync alert for an account. Never raises."""
        try:
            parts = [f"Trade sync [{account_id}] {kind}"]
            for key, value in (details or {}).items():
                parts.append(f"{key}: {value}")
            self.alert("\n".join(parts), error_key=f"{account_id}:{kind}")
        except Exception as e:
            logger.warning(f"Failed to deliver {kind} alert for {account_id}: {e}")

    def alert(self, message: str, error_key: Optional[str] = None) -> None:
        """Send an alert message.

        Always logs. Sends to Telegram if configured and not throttled.

        Args:
            message: Alert text.
            error_key: Key for throttling (e.g., 'main:SYNC_FAILED').
                If None, the message itself is used as the key.
        """
        logger.warning(f"ALERT: {message}")

        if self._bot is None:
            return

        key = error_key or message
        now = datetime.now(UTC)

        with self._lock:
            last = self._last_sent.get(key)
            if last and (now - last) < timedelta(seconds=self._throttle_seconds):
                return
            self._last_sent[key] = now

        thread = threading.Thread(
            target=self._send_telegram,
            args=(message,),
            daemon=True,
        )
        thread.start()

    def _send_telegram(self, message: str) -> None:
        """Send a message via Telegram (runs in background thread)."""
        try:
            self._bot.send_message(
                chat_id=self._telegram_config.chat_id,
                text=message,
            )
        except Exception as e:
            logger.warning(f"Failed to send Telegram message: {e}")
