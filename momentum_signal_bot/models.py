from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .clock import parse_iso, to_iso

LONG = "LONG"
SHORT = "SHORT"

OPEN = "OPEN"
PENDING = "PENDING"  # legacy records, treated like OPEN
TP = "TP"
SL = "SL"
EXPIRED = "EXPIRED"


@dataclass(frozen=True)
class Candle:
    open_time_ms: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass(frozen=True)
class SignalCandidate:
    symbol: str
    side: str  # LONG or SHORT
    entry: float
    stop_loss: float
    take_profit: float
    risk_reward: float
    confidence: int
    timeframe: str
    meta: Dict[str, float] = field(default_factory=dict)


@dataclass
class MonitorCheck:
    checked_at: datetime
    observed_status: Optional[str]
    error: Optional[str] = None
    failures: int = 1  # consecutive failed ticks folded into this entry

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"checkedAt": to_iso(self.checked_at), "observedStatus": self.observed_status}
        if self.error:
            out["error"] = self.error
            if self.failures > 1:
                out["failures"] = self.failures
        return out

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "MonitorCheck":
        status = d.get("observedStatus", d.get("resultStatus"))
        return cls(
            checked_at=parse_iso(d["checkedAt"]),
            observed_status=status,
            error=d.get("error"),
            failures=int(d.get("failures") or 1),
        )


@dataclass
class Signal:
    """A detected setup tracked until TP, SL or expiry.

    Owned by its monitor while OPEN; terminal records are kept read-only.
    """

    signal_id: str
    symbol: str
    side: str
    entry: float
    stop_loss: float
    take_profit: float
    risk_reward: float
    confidence: int
    created_at: datetime
    status: str = OPEN
    resolved_at: Optional[datetime] = None
    monitor_checks: int = 0
    monitor_history: List[MonitorCheck] = field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return self.status in (OPEN, PENDING)

    @classmethod
    def from_candidate(cls, cand: SignalCandidate, signal_id: str, created_at: datetime) -> "Signal":
        return cls(
            signal_id=signal_id,
            symbol=cand.symbol,
            side=cand.side,
            entry=cand.entry,
            stop_loss=cand.stop_loss,
            take_profit=cand.take_profit,
            risk_reward=cand.risk_reward,
            confidence=cand.confidence,
            created_at=created_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.signal_id,
            "symbol": self.symbol,
            "side": self.side,
            "entry": self.entry,
            "stopLoss": self.stop_loss,
            "takeProfit": self.take_profit,
            "riskReward": self.risk_reward,
            "confidence": self.confidence,
            "createdAt": to_iso(self.created_at),
            "status": self.status,
            "resolvedAt": to_iso(self.resolved_at) if self.resolved_at else None,
            "monitorChecks": self.monitor_checks,
            "monitorHistory": [h.to_dict() for h in self.monitor_history],
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Signal":
        # Older files used the short keys sl/tp/rr.
        resolved = d.get("resolvedAt")
        return cls(
            signal_id=str(d["id"]),
            symbol=str(d["symbol"]).upper(),
            side=str(d["side"]).upper(),
            entry=float(d["entry"]),
            stop_loss=float(d.get("stopLoss", d.get("sl"))),
            take_profit=float(d.get("takeProfit", d.get("tp"))),
            risk_reward=float(d.get("riskReward", d.get("rr")) or 0.0),
            confidence=int(d.get("confidence") or 0),
            created_at=parse_iso(d["createdAt"]),
            status=str(d.get("status") or OPEN),
            resolved_at=parse_iso(resolved) if resolved else None,
            monitor_checks=int(d.get("monitorChecks") or 0),
            monitor_history=[MonitorCheck.from_dict(h) for h in d.get("monitorHistory") or []],
        )


@dataclass
class Subscriber:
    chat_id: str
    first_name: str = ""
    username: str = ""
    subscribed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chatId": self.chat_id,
            "first_name": self.first_name,
            "username": self.username,
            "subscribedAt": to_iso(self.subscribed_at) if self.subscribed_at else None,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Subscriber":
        sub = d.get("subscribedAt")
        return cls(
            chat_id=str(d["chatId"]),
            first_name=d.get("first_name") or "",
            username=d.get("username") or "",
            subscribed_at=parse_iso(sub) if sub else None,
        )
