from __future__ import annotations


class BotError(Exception):
    """Base class for recoverable bot errors."""


class DataUnavailable(BotError):
    """Every candle source failed for one request."""


class InsufficientHistory(BotError):
    """Fewer candles than the indicators need."""


class MalformedProviderResponse(BotError):
    """A provider body could not be normalised into candles."""


class NotificationDeliveryFailure(BotError):
    def __init__(self, chat_id: str, reason: str, *, permanent: bool = False):
        super().__init__(f"send to {chat_id} failed: {reason}")
        self.chat_id = chat_id
        self.reason = reason
        self.permanent = permanent


class PersistenceFailure(BotError):
    """Store read or write failed."""
