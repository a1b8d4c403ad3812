"""Demo instrumented program: emits console, timer, logging and error events."""

import asyncio
import logging
import sys

from console_relay.runtime import RuntimeContext


class Cart:
    def __init__(self):
        self.items = [{"sku": "A-100", "qty": 2}, {"sku": "B-200", "qty": 1}]
        self.owner = self


async def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
        stream=sys.stderr,
    )

    ctx = RuntimeContext()
    ctx.start()
    console = ctx.console

    console.time("checkout")
    console.log("cart loaded", Cart())
    console.info("items", [n for n in range(100)])
    console.warn("slow path taken")
    logging.getLogger("demo").warning("inventory low for %s", "A-100")

    try:
        {}["missing"]
    except KeyError as e:
        console.error("lookup failed", e)
        ctx.capture_exception(e)

    await asyncio.sleep(0.1)
    console.time_end("checkout")

    # Give the connection a moment to flush before exiting
    for _ in range(20):
        if ctx.client.connected and ctx.client.pending == 0:
            break
        await asyncio.sleep(0.1)
    await asyncio.sleep(0.2)

    ctx.stop()
    ctx.uninstall()


if __name__ == "__main__":
    asyncio.run(main())
