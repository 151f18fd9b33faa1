"""Delivery channels that turn a quote's text into an outbound message."""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Protocol

import httpx

from .config import Config
from .errors import DeliveryFailure
from .talk import TalkClient

logger = logging.getLogger("chatter_quote.delivery")


class DeliverySink(Protocol):
    def send(self, text: str, reference_id: str | None = None) -> None:
        """Transmit text to the recipient. Raises DeliveryFailure on failure."""
        ...


class TalkDeliverySink:
    """Posts quotes into the recipient's Nextcloud Talk conversation."""

    def __init__(self, config: Config):
        self.config = config
        self.conversation_token = config.talk.conversation_token

    def send(self, text: str, reference_id: str | None = None) -> None:
        if not self.config.nextcloud.url:
            raise DeliveryFailure("Nextcloud URL not configured")
        if not self.conversation_token:
            raise DeliveryFailure("No Talk conversation token configured")

        client = TalkClient(self.config)
        try:
            asyncio.run(client.send_message(self.conversation_token, text, reference_id=reference_id))
        except httpx.HTTPStatusError as e:
            raise DeliveryFailure(
                f"Talk rejected message (HTTP {e.response.status_code})"
            ) from e
        except httpx.HTTPError as e:
            raise DeliveryFailure(f"Talk request failed: {e}") from e


class LogDeliverySink:
    """Only logs what would have been sent (dry-run / Talk disabled)."""

    def send(self, text: str, reference_id: str | None = None) -> None:
        logger.info("[dry-run] Would send quote: %s", text)


class SentQuoteLog:
    """Appends every delivered quote to a plain-text log with a timestamp."""

    def __init__(self, path: Path | None):
        self.path = Path(path).expanduser() if path else None

    def record(self, text: str, when: datetime | None = None) -> None:
        if self.path is None:
            return
        when = when or datetime.now()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a") as f:
                f.write(f"{when.strftime('%Y-%m-%dT%H:%M:%S')} {text}\n")
        except OSError as e:
            logger.warning("Failed to write sent-quote log %s: %s", self.path, e)


def make_delivery_sink(config: Config, dry_run: bool = False) -> DeliverySink:
    if dry_run or not config.talk.enabled:
        return LogDeliverySink()
    return TalkDeliverySink(config)
