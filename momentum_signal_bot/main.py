from __future__ import annotations

import argparse
import asyncio
import logging

from .config import load_config
from .runner import BotRunner


def _setup_logging(level: str) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Momentum Signal Bot - RSI/Bollinger/ATR alerts with TP/SL tracking")
    p.add_argument("--config", required=True, help="Path to YAML config")
    args = p.parse_args(argv)

    cfg = load_config(args.config)
    _setup_logging(cfg.app.log_level)

    try:
        runner = BotRunner(cfg)
        asyncio.run(runner.run_forever())
        return 0
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logging.getLogger("main").exception("fatal err=%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
