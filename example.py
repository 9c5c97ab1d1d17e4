import asyncio
import logging

from jatemp.client import JatempClient
from jatemp.payload import Reading
from jatemp.status import StatusListener


async def main():
    client = JatempClient(
        # discovery_timeout=30,  # (optional) rescan if the thermometer stops answering while connecting
    )
    client.setup_signal_handlers()

    async def on_status(status: str):
        print(f"status: {status}")

    async def on_reading(reading: Reading):
        print(f"value: {reading.raw_text}")

    client.add_status_listener(StatusListener(on_status=on_status, on_reading=on_reading))

    # runs until SIGINT / SIGTERM, reconnecting whenever the thermometer goes out of range
    await client.run()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        quit()
