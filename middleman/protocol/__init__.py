"""ECoS wire protocol: command codec, reply framing and synthetic replies."""

from .command import Command, CommandArgument, CommandKind, parse, serialize
from .framing import LINE_TERMINATOR, ReplyAssembler

__all__ = [
    "Command",
    "CommandArgument",
    "CommandKind",
    "LINE_TERMINATOR",
    "ReplyAssembler",
    "parse",
    "serialize",
]
