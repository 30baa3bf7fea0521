from .base import FeedbackSource
from .simulated import SimulatedSource

# Hsi88Source is imported lazily by the gateway so that pyserial-asyncio is
# only loaded when a real device is configured.

__all__ = ["FeedbackSource", "SimulatedSource"]
