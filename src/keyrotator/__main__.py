import argparse
import logging
import os

from aiohttp import web

from .app import create_app
from .balance import BalanceChecker
from .env import load_config_from_env, load_credentials_from_env
from .errors import NoKeysConfiguredError
from .pool import KeyPool

logger = logging.getLogger("keyrotator")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="keyrotator", description="Key-rotating reverse proxy for a single upstream API."
    )
    parser.add_argument("--env-file", default=".env", help="optional .env file (default: .env)")
    parser.add_argument("--host", help="override HOST")
    parser.add_argument("--port", type=int, help="override PORT")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = load_config_from_env(env_path=args.env_file)
    try:
        pool = KeyPool(
            load_credentials_from_env(env_path=args.env_file),
            cooldown_seconds=config.retry.cooldown_seconds,
        )
    except NoKeysConfiguredError as e:
        logger.error(str(e))
        return 1

    checker = None
    if config.balance_check_interval > 0:
        checker = BalanceChecker(
            pool,
            config.balance_url,
            interval=config.balance_check_interval,
            auth_scheme=config.auth.scheme,
        )
    app = create_app(pool, config, balance_checker=checker)

    host = args.host or config.host
    port = args.port or config.port
    logger.info(f"proxy: http://{host}:{port}{config.path_prefix}/chat/completions")
    logger.info(f"upstream: {config.upstream_base_url}")
    logger.info(f"keys loaded: {len(pool)}")
    logger.info(f"health: http://{host}:{port}/health")
    # handler_cancellation: a disconnected caller aborts its in-flight upstream call
    web.run_app(app, host=host, port=port, handler_cancellation=True, print=None)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
