#!/usr/bin/env python3
"""
Async contest scoreboard server.
Scores CSV prediction files against per-task answer keys, keeps a ranked
leaderboard and pushes every change to WebSocket subscribers.
"""

import argparse
import asyncio
import logging
import os
from pathlib import Path

from contest_scoreboard.scoreboard import ScoreboardSystem


async def main():
    """Main function with command line interface."""

    parser = argparse.ArgumentParser(
        description="Contest scoreboard server with HTTP API and live WebSocket feed",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument(
        "--web-port",
        type=int,
        default=int(os.getenv("WEB_PORT", "8081")),
        help="Web interface port (env: WEB_PORT)"
    )
    parser.add_argument(
        "--db",
        default=os.getenv("DB_PATH", "scoreboard.db"),
        help="SQLite database file path (env: DB_PATH)"
    )
    parser.add_argument(
        "--config",
        default=os.getenv("CONFIG_PATH", "contest_config.json"),
        help="Configuration file path (env: CONFIG_PATH)"
    )
    parser.add_argument(
        "--host",
        default=os.getenv("HOST", "0.0.0.0"),
        help="Host to bind the server to (env: HOST)"
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Logging verbosity (env: LOG_LEVEL)"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    logger = logging.getLogger("contest_scoreboard")

    config_path = Path(args.config)

    if config_path.exists() and not config_path.is_file():
        logger.error("%s exists but is not a file", args.config)
        return

    system = ScoreboardSystem(
        host=args.host,
        web_port=args.web_port,
        db_path=args.db,
        config_path=args.config,
    )

    await system.init_db()
    system.print_full_scoreboard()

    await system.run()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nServer interrupted")
