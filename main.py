"""Entry point for the relay host."""

import argparse
import asyncio
import logging
import os
import signal
import sys

from console_relay.config import load_host_config
from console_relay.host import RelayHost


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Receive and correlate runtime log events")
    parser.add_argument("--config", default=None, help="YAML config file (default: $RELAY_CONFIG or relay.yaml)")
    parser.add_argument(
        "--workspace",
        action="append",
        default=[],
        help="Workspace root used to resolve relative locations (repeatable)",
    )
    return parser.parse_args(argv)


async def main(argv=None) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
        stream=sys.stderr,
    )
    logger = logging.getLogger(__name__)

    args = parse_args(argv)
    config = load_host_config(args.config)
    workspace_roots = args.workspace or [os.getcwd()]

    host = RelayHost(config, workspace_roots)
    shutdown_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_event.set)

    await host.start()
    logger.info("Relay host running on %s, workspace=%s", host.status_text(), workspace_roots)
    try:
        await shutdown_event.wait()
    finally:
        logger.info("Shutting down, %d events received", host.store.total_ingested)
        await host.stop()


if __name__ == "__main__":
    asyncio.run(main())
