from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

import aiohttp

from ..errors import NotificationDeliveryFailure

log = logging.getLogger("telegram")

# Bot API descriptions that mean the chat will never accept messages again.
_PERMANENT_MARKERS = ("chat not found", "user is deactivated", "bot was blocked", "bot was kicked")


@dataclass
class BroadcastResult:
    success: int = 0
    failure: int = 0
    unreachable: List[str] = field(default_factory=list)


def _is_permanent(status: int, description: str) -> bool:
    if status == 403:
        return True
    desc = (description or "").lower()
    return status == 400 and any(m in desc for m in _PERMANENT_MARKERS)


class TelegramNotifier:
    def __init__(self, token: str, *, send_delay_s: float = 0.08, timeout_s: float = 15.0):
        self.token = (token or "").strip()
        self.send_delay_s = float(send_delay_s)
        self.timeout_s = float(timeout_s)
        self._session: Optional[aiohttp.ClientSession] = None

    def enabled(self) -> bool:
        return bool(self.token)

    def _url(self, method: str) -> str:
        return f"https://api.telegram.org/bot{self.token}/{method}"

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_s))
        return self._session

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    async def _post(self, method: str, payload: Dict[str, Any], *, timeout_s: Optional[float] = None) -> Dict[str, Any]:
        sess = await self._get_session()
        kwargs: Dict[str, Any] = {"json": payload}
        if timeout_s is not None:
            kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout_s)
        async with sess.post(self._url(method), **kwargs) as resp:
            try:
                body = await resp.json(content_type=None)
            except ValueError:
                body = {"ok": False, "description": (await resp.text())[:500]}
            if not isinstance(body, dict):
                body = {"ok": False, "description": str(body)[:500]}
            body.setdefault("http_status", resp.status)
            return body

    async def send(self, chat_id: str, text: str) -> None:
        """Send one message; raises NotificationDeliveryFailure on any failure."""
        payload = {"chat_id": chat_id, "text": text, "disable_web_page_preview": True}
        try:
            body = await self._post("sendMessage", payload)
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            raise NotificationDeliveryFailure(str(chat_id), repr(e), permanent=False) from e
        if body.get("ok"):
            return
        status = int(body.get("error_code") or body.get("http_status") or 0)
        desc = str(body.get("description") or "")
        raise NotificationDeliveryFailure(str(chat_id), f"{status} {desc}", permanent=_is_permanent(status, desc))

    async def broadcast(self, text: str, chat_ids: Iterable[str]) -> BroadcastResult:
        """Send to every chat; one failure never aborts the rest."""
        result = BroadcastResult()
        if not self.enabled():
            return result
        for chat_id in chat_ids:
            try:
                await self.send(chat_id, text)
                result.success += 1
            except NotificationDeliveryFailure as e:
                result.failure += 1
                log.warning("telegram_send_failed chat_id=%s permanent=%s reason=%s", chat_id, e.permanent, e.reason)
                if e.permanent:
                    result.unreachable.append(str(chat_id))
            await asyncio.sleep(self.send_delay_s)
        return result

    async def get_updates(self, offset: Optional[int], timeout_s: int = 10) -> List[Dict[str, Any]]:
        payload: Dict[str, Any] = {"timeout": int(timeout_s), "allowed_updates": ["message"]}
        if offset is not None:
            payload["offset"] = offset
        body = await self._post("getUpdates", payload, timeout_s=timeout_s + 10)
        if not body.get("ok"):
            log.warning("telegram_get_updates_failed status=%s body=%s", body.get("http_status"), str(body.get("description"))[:200])
            return []
        return list(body.get("result") or [])
