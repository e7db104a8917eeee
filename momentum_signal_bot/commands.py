from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

import aiohttp

from .clock import utc_now
from .errors import DataUnavailable, NotificationDeliveryFailure
from .formatters import format_analysis_message
from .models import Subscriber

if TYPE_CHECKING:
    from .runner import BotRunner

log = logging.getLogger("commands")

WELCOME = (
    "👋 Hi {name}!\nYou are now subscribed to automatic signals.\n\n"
    "⚠️ Signals are for reference only ({label}). Keep risk at 2-3% per trade."
)
HELP = "/start to subscribe, /stop to unsubscribe, /analyze SYMBOL for a manual check, /status for counts"


def _parse_command(text: str):
    parts = (text or "").strip().split(maxsplit=1)
    if not parts or not parts[0].startswith("/"):
        return None, ""
    cmd = parts[0].split("@", 1)[0].lower()
    arg = parts[1].strip() if len(parts) > 1 else ""
    return cmd, arg


class CommandHandler:
    """Telegram /start, /stop, /status and /analyze."""

    def __init__(self, runner: "BotRunner"):
        self.runner = runner
        self._offset: Optional[int] = None

    async def handle_message(self, chat_id: str, text: str, user: Optional[Dict[str, Any]] = None) -> Optional[str]:
        cmd, arg = _parse_command(text)
        if cmd is None:
            return None
        user = user or {}
        state = self.runner.state

        if cmd == "/start":
            sub = Subscriber(
                chat_id=str(chat_id),
                first_name=user.get("first_name") or "",
                username=user.get("username") or "",
                subscribed_at=utc_now(),
            )
            if not await state.add_subscriber(sub):
                return "You are already subscribed. Thank you!"
            await state.persist()
            log.info("user_subscribed chat_id=%s user=%s", chat_id, sub.username or sub.first_name)
            return WELCOME.format(name=sub.first_name or "Trader", label=self.runner.cfg.presentation.bot_label)

        if cmd == "/stop":
            if not await state.remove_subscriber(str(chat_id)):
                return "You are not subscribed."
            await state.persist()
            log.info("user_unsubscribed chat_id=%s", chat_id)
            return "✅ Unsubscribed. Send /start to subscribe again."

        if cmd == "/status":
            return f"👥 Subscribers: {len(state.subscribers)}\nActive signals: {len(state.open_signals())}"

        if cmd == "/analyze":
            if not arg:
                return "Usage: /analyze SYMBOL"
            symbol = arg.split()[0].upper()
            if not symbol.endswith("USDT"):
                symbol += "USDT"
            try:
                cand = await self.runner.generator.generate(symbol)
            except DataUnavailable as e:
                log.warning("analyze_failed symbol=%s err=%s", symbol, e)
                cand = None
            return format_analysis_message(symbol, cand)

        if cmd == "/help":
            return HELP
        return None

    async def handle_update(self, update: Dict[str, Any]) -> None:
        msg = update.get("message") or {}
        chat = msg.get("chat") or {}
        chat_id = chat.get("id")
        text = msg.get("text")
        if chat_id is None or not text:
            return
        reply = await self.handle_message(str(chat_id), text, msg.get("from"))
        if reply is None:
            return
        try:
            await self.runner.notifier.send(str(chat_id), reply)
        except NotificationDeliveryFailure as e:
            log.warning("command_reply_failed chat_id=%s reason=%s", chat_id, e.reason)

    async def poll_forever(self) -> None:
        tg = self.runner.cfg.telegram
        backoff = 1.0
        while True:
            try:
                updates = await self.runner.notifier.get_updates(self._offset, timeout_s=tg.poll_timeout_s)
                backoff = 1.0
            except (asyncio.TimeoutError, aiohttp.ClientError) as e:
                log.warning("polling_error err=%s retry_in=%.0fs", e, backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, 60.0)
                continue
            for upd in updates:
                self._offset = int(upd.get("update_id", 0)) + 1
                try:
                    await self.handle_update(upd)
                except Exception as e:
                    log.exception("command_error update_id=%s err=%s", upd.get("update_id"), e)
            await asyncio.sleep(tg.poll_interval_s)
