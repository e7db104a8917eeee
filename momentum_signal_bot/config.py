from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional
import os
import yaml


DEFAULT_SYMBOLS = [
    "BTCUSDT", "ETHUSDT", "BNBUSDT", "SOLUSDT", "XRPUSDT", "ADAUSDT", "AVAXUSDT", "DOTUSDT", "TRXUSDT", "LINKUSDT",
    "MATICUSDT", "LTCUSDT", "ATOMUSDT", "ETCUSDT", "XLMUSDT", "BCHUSDT", "FILUSDT", "ALGOUSDT", "NEARUSDT", "UNIUSDT",
    "DOGEUSDT", "ZECUSDT", "1000PEPEUSDT", "ZENUSDT", "HYPEUSDT", "WIFUSDT", "MEMEUSDT", "BOMEUSDT", "POPCATUSDT",
    "MYROUSDT", "HYPERUSDT", "TOSHIUSDT", "TURBOUSDT", "NFPUSDT", "PEOPLEUSDT", "ARCUSDT", "BTCDOMUSDT", "DASHUSDT",
    "APTUSDT", "ARBUSDT", "OPUSDT", "SUIUSDT", "SEIUSDT", "TIAUSDT", "INJUSDT", "RNDRUSDT", "FETUSDT", "AGIXUSDT",
    "OCEANUSDT",
]


def _env_override(value: Any, env_key: str) -> Any:
    env_val = os.getenv(env_key)
    if env_val is None:
        return value
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


@dataclass
class SourceConfig:
    name: str
    kind: str  # binance_spot | binance_futures | bybit_linear
    priority: int = 1
    base_url: Optional[str] = None
    enabled: bool = True


def _default_sources() -> List[SourceConfig]:
    return [
        SourceConfig(name="Binance Main", kind="binance_spot", priority=1),
        SourceConfig(name="Binance Futures (fapi) fallback", kind="binance_futures", priority=2),
        SourceConfig(name="Bybit Backup", kind="bybit_linear", priority=3),
    ]


@dataclass
class ProviderConfig:
    sources: List[SourceConfig] = field(default_factory=_default_sources)
    timeout_s: float = 10.0
    rate_limit_backoff_s: float = 3.0
    user_agent: str = "Mozilla/5.0 (compatible; MomentumSignalBot/1.0)"
    conn_limit: int = 20


@dataclass
class StrategyConfig:
    timeframe: str = "5m"
    history_candles: int = 200
    min_candles: int = 30

    rsi_length: int = 14
    bb_length: int = 20
    bb_std: float = 2.0
    velocity_sma: int = 3
    atr_length: int = 14

    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    stop_atr_mult: float = 1.5
    target_atr_mult: float = 3.0


@dataclass
class ScanConfig:
    symbols: List[str] = field(default_factory=lambda: list(DEFAULT_SYMBOLS))
    interval_minutes: int = 90
    initial_delay_s: float = 10.0
    per_symbol_delay_s: float = 3.0
    post_broadcast_delay_s: float = 2.0
    min_confidence: int = 60
    dedupe_window_minutes: int = 60


@dataclass
class MonitorConfig:
    tick_interval_s: float = 60.0
    max_monitor_hours: float = 48.0
    lookback_minutes: int = 120
    interval: str = "1m"
    ignore_pre_signal_candles: bool = True


@dataclass
class TelegramConfig:
    enabled: bool = True
    token: str = ""
    send_delay_s: float = 0.08
    poll_timeout_s: int = 10
    poll_interval_s: float = 0.3


@dataclass
class StorageConfig:
    directory: str = "."
    persist_interval_s: float = 60.0
    max_resolved_signals: int = 500


@dataclass
class HttpConfig:
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 3000


@dataclass
class PresentationConfig:
    timezone: str = "UTC+7"
    locale: str = "en"
    bot_label: str = "Physics Momentum"


@dataclass
class AppConfig:
    name: str = "Momentum Signal Bot"
    log_level: str = "INFO"


@dataclass
class Config:
    app: AppConfig
    provider: ProviderConfig
    strategy: StrategyConfig
    scan: ScanConfig
    monitor: MonitorConfig
    telegram: TelegramConfig
    storage: StorageConfig
    http: HttpConfig
    presentation: PresentationConfig

    @classmethod
    def default(cls) -> "Config":
        return _build({})


def _build(raw: dict) -> Config:
    provider = dict(raw.get("provider") or {})
    sources = provider.pop("sources", None)
    provider_cfg = ProviderConfig(**provider)
    if sources is not None:
        provider_cfg.sources = [SourceConfig(**s) for s in sources]

    scan = dict(raw.get("scan") or {})
    if scan.get("symbols") is not None:
        scan["symbols"] = [str(s).strip().upper() for s in scan["symbols"] if str(s).strip()]

    return Config(
        app=AppConfig(**(raw.get("app") or {})),
        provider=provider_cfg,
        strategy=StrategyConfig(**(raw.get("strategy") or {})),
        scan=ScanConfig(**scan),
        monitor=MonitorConfig(**(raw.get("monitor") or {})),
        telegram=TelegramConfig(**(raw.get("telegram") or {})),
        storage=StorageConfig(**(raw.get("storage") or {})),
        http=HttpConfig(**(raw.get("http") or {})),
        presentation=PresentationConfig(**(raw.get("presentation") or {})),
    )


def load_config(path: str) -> Config:
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    cfg = _build(raw)

    # env overrides (useful on servers)
    token = _env_override(cfg.telegram.token, "TELEGRAM_TOKEN")
    cfg.telegram.token = _env_override(token, "TELEGRAM_BOT_TOKEN")
    cfg.http.port = _env_override(cfg.http.port, "PORT")
    cfg.scan.interval_minutes = _env_override(cfg.scan.interval_minutes, "SCAN_INTERVAL_MINUTES")
    cfg.storage.directory = _env_override(cfg.storage.directory, "STORAGE_DIR")
    cfg.app.log_level = _env_override(cfg.app.log_level, "LOG_LEVEL")

    # Allow SYMBOLS="BTCUSDT,ETHUSDT"
    sym_env = os.getenv("SYMBOLS")
    if sym_env:
        cfg.scan.symbols = [x.strip().upper() for x in sym_env.split(",") if x.strip()]

    return cfg
