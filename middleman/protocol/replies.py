"""Synthetic station replies for the virtual feedback bus.

The controller addresses the feedback bus (object 26) and its modules
(objects 100 and up) exactly like the station's native S88 bus; these
builders produce the answers the station would have sent.
"""
from __future__ import annotations

from typing import Iterable

from .command import Command
from .framing import join_lines

PORTS_PER_MODULE = 16
END_OK = "<END 0 (OK)>"


def state_line(object_id: int, hex_state: str) -> str:
    return f"{object_id} state[0x{hex_state}]"


def state_event(object_id: int, hex_state: str) -> str:
    """``<EVENT id>`` block carrying the current module state."""
    return join_lines([f"<EVENT {object_id}>", state_line(object_id, hex_state), END_OK])


def metadata_reply(command: Command, hex_state: str) -> str:
    object_id = command.object_id
    return join_lines([
        f"<REPLY {command.serialize()}>",
        f"{object_id} objectclass[feedback-module]",
        f"{object_id} view[none]",
        f"{object_id} listview[none]",
        f"{object_id} ports[{PORTS_PER_MODULE}]",
        state_line(object_id, hex_state),
        END_OK,
    ])


def request_reply(object_id: int) -> str:
    return join_lines([f"<REPLY request({object_id}, view)>", END_OK])


def ports_reply(bus_id: int, module_ids: Iterable[int]) -> str:
    lines = [f"<REPLY queryObjects({bus_id},ports)>"]
    lines.extend(f"{oid} ports[{PORTS_PER_MODULE}]" for oid in module_ids)
    lines.append(END_OK)
    return join_lines(lines)


def ack_reply(command: Command) -> str:
    """Plain acknowledgement for commands the virtual bus accepts but ignores."""
    return join_lines([f"<REPLY {command.serialize()}>", END_OK])
