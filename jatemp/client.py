import asyncio
import logging
from asyncio import Task
from typing import Optional

from jatemp.adapter import BleAdapter
from jatemp.bleak_adapter import BleakAdapter
from jatemp.device_filter import DeviceFilter
from jatemp.payload import Reading
from jatemp.session import ConnectionState
from jatemp.state_machine import ConnectionStateMachine
from jatemp.status import StatusListener


class JatempClient:
    """
    Connects to the first JATEMP thermometer in range and keeps the latest reading up to date,
    reconnecting whenever the connection is lost.
    """

    logging = logging.getLogger(__name__)

    def __init__(
        self,
        adapter: Optional[BleAdapter] = None,
        device_filter: Optional[DeviceFilter] = None,
        discovery_timeout: Optional[float] = None,
    ):
        """
        Args:
            adapter (Optional[BleAdapter]): The Bluetooth stack to use. Defaults to a BleakAdapter.
            device_filter (Optional[DeviceFilter]): Identifies the target device. Defaults to the JATEMP thermometer.
            discovery_timeout (Optional[float]): Seconds a connection or discovery step may take before
                scanning is restarted. None (default) waits forever.
        """
        self._adapter = adapter if adapter else BleakAdapter()
        self._state_machine = ConnectionStateMachine(
            adapter=self._adapter,
            device_filter=device_filter,
            discovery_timeout=discovery_timeout,
        )
        self._adapter.set_event_sink(self._state_machine.post)
        self._run_task: Optional[Task] = None
        self._stopping = False

    @property
    def state(self) -> ConnectionState:
        return self._state_machine.state

    @property
    def status(self) -> Optional[str]:
        return self._state_machine.status

    @property
    def latest_reading(self) -> Optional[Reading]:
        return self._state_machine.latest_reading

    def add_status_listener(self, listener: StatusListener) -> None:
        """
        Adds a listener that is informed about status changes and accepted readings.
        Args:
            listener (StatusListener): The listener to be added.
        """
        self._state_machine.add_status_listener(listener)

    async def run(self) -> None:
        """
        Processes Bluetooth events until stop() is called.
        A stopped client can be run again, it starts over with a new scan.
        """
        if self._run_task is not None and not self._run_task.done():
            raise RuntimeError("client is already running")

        self._stopping = False
        await self._state_machine.reset()
        self._run_task = asyncio.ensure_future(self._state_machine.run())
        self._adapter.start()
        try:
            await self._run_task
        except asyncio.CancelledError:
            if not self._stopping:
                raise
            self.logging.info("client stopped")
        finally:
            self._run_task = None

    async def stop(self) -> None:
        """
        Closes the adapter and ends run().
        """
        self._stopping = True
        await self._adapter.close()
        if self._run_task:
            self._run_task.cancel()

    def setup_signal_handlers(self) -> None:
        """
        Sets up signal handlers for graceful shutdown.
        This is useful to ensure that the connection is properly closed when the application is terminated.
        """
        import signal

        def signal_handler(signum):
            signame = signal.Signals(signum).name
            self.logging.info(f'Signal handler called with signal {signame} ({signum})')
            asyncio.ensure_future(self.stop())

        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, lambda: signal_handler(signal.SIGINT))
        loop.add_signal_handler(signal.SIGTERM, lambda: signal_handler(signal.SIGTERM))
