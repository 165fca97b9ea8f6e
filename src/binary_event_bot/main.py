import argparse
import logging

from rich import print

from binary_event_bot.config import load_config
from binary_event_bot.engine.bot import BotEngine
from binary_event_bot.server import serve
from binary_event_bot.utils.log import setup_logging

log = logging.getLogger(__name__)


def run_once(engine: BotEngine) -> dict:
    engine.run_once()
    status = engine.snapshot()
    for p in status["prices"]:
        print(f"[bold]{p['event_id']}[/bold] yes={p['yes_price']:.3f} no={p['no_price']:.3f} ttr={p['seconds_to_resolution'] / 60:.0f}m")
    for entry in status["logs"]:
        print(f"{entry['level']:5} {entry.get('event_id') or '-'} {entry['message']}")
    print(f"open_positions={sum(1 for p in status['positions'] if not p['closed'])} realized_pnl_usd={status['realizedPnlUsd']:.2f}")
    return status


def run_forever(engine: BotEngine, host: str, port: int) -> None:
    server = serve(engine, host, port)
    if engine.state.bot_enabled:
        engine.start()
    log.info("control surface listening on http://%s:%s", host, server.server_address[1])
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        engine.stop()
        server.server_close()


def main():
    parser = argparse.ArgumentParser(description="Simulated near-threshold entry bot for binary prediction markets")
    parser.add_argument("--config", help="YAML config path (built-in defaults when omitted)")
    parser.add_argument("--once", action="store_true", help="run a single cycle and print the result")
    parser.add_argument("--host")
    parser.add_argument("--port", type=int)
    parser.add_argument("--log-level", default="INFO")
    args = parser.parse_args()

    setup_logging(args.log_level)
    cfg = load_config(args.config)
    engine = BotEngine(cfg)

    if args.once:
        run_once(engine)
        return
    run_forever(engine, args.host or cfg.server.host, args.port if args.port is not None else cfg.server.port)


if __name__ == "__main__":
    main()
