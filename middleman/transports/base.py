from abc import ABC, abstractmethod


class FeedbackSource(ABC):
    """Line-oriented access to the feedback hardware.

    ``readline`` returns one ASCII status line without its terminator and
    raises :class:`~middleman.errors.DeviceFailure` when the device is gone.
    """

    @abstractmethod
    async def open(self):
        pass

    @abstractmethod
    async def close(self):
        pass

    @abstractmethod
    async def send(self, command: str):
        pass

    @abstractmethod
    async def readline(self) -> str:
        pass
