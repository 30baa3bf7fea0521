"""Gateway between layout controllers, the ECoS command station and the S88 bus.

Controllers connect to the listener as if it were the station; the gateway
answers feedback-bus queries itself and relays everything else.
"""

from .broadcast import BroadcastSink, build_payload
from .gateway import Gateway
from .station import ConnectionObserver, ConnectionState, StationConnector
from .upstream import ClientListener, ClientSession

__all__ = [
    "BroadcastSink",
    "build_payload",
    "Gateway",
    "ConnectionObserver",
    "ConnectionState",
    "StationConnector",
    "ClientListener",
    "ClientSession",
]
