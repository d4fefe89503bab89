import logging
from dataclasses import dataclass
from typing import List, Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send(self, recipient: str, subject: str, body: str) -> None:
        ...


@dataclass
class SentMessage:
    recipient: str
    subject: str
    body: str


class LogNotifier:
    """Writes messages to the log instead of delivering them. Used when SMTP is not configured."""

    def __init__(self):
        self.sent: List[SentMessage] = []

    async def send(self, recipient: str, subject: str, body: str) -> None:
        self.sent.append(SentMessage(recipient, subject, body))
        logger.info(f"Email (not delivered) to={recipient} subject={subject!r}")
