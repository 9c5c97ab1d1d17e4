from collections.abc import Callable
from typing import Any, Awaitable, Optional

from jatemp.payload import Reading


class StatusListener:
    def __init__(
        self,
        on_status: Optional[Callable[[str], Awaitable[Any]]] = None,
        on_reading: Optional[Callable[[Reading], Awaitable[Any]]] = None,
    ):
        """
        Initializes the StatusListener with optional callbacks for status and value updates.
        Args:
            on_status (Optional[Callable[[str], Awaitable[Any]]]): Async callback called with each new status text,
                f.e. "Connected".
            on_reading (Optional[Callable[[Reading], Awaitable[Any]]]): Async callback called with each accepted reading.
        """
        self.on_status = on_status
        self.on_reading = on_reading
