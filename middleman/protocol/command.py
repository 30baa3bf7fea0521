"""Textual command codec for the ECoS wire protocol.

A command frame looks like ``name(arg0, arg1, ...)`` where every argument is
either a bare token (``26``, ``view``) or a token followed by bracketed
parameters (``name["Track 1"]``, ``state[0x022C]``).
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Tuple

from ..errors import MalformedFrame

# ASCII decimal only; int() would also take "1_0", "+5" and non-ASCII digits.
_OBJECT_ID_RE = re.compile(r"-?[0-9]+")


class CommandKind(Enum):
    """Command verbs the gateway distinguishes. Everything else is UNKNOWN."""

    GET = "get"
    SET = "set"
    REQUEST = "request"
    RELEASE = "release"
    QUERY_OBJECTS = "queryObjects"
    UNKNOWN = ""

    @classmethod
    def from_name(cls, name: str) -> "CommandKind":
        for kind in cls:
            if kind is not cls.UNKNOWN and kind.value == name:
                return kind
        return cls.UNKNOWN


def split_top_level(text: str, separator: str = ",") -> List[str]:
    """Split on separators that are outside brackets and double quotes.

    Empty parts are dropped, the others are returned stripped.
    """
    parts: List[str] = []
    current: List[str] = []
    depth = 0
    in_quotes = False
    for ch in text:
        if ch == '"':
            in_quotes = not in_quotes
        elif not in_quotes:
            if ch == "[":
                depth += 1
            elif ch == "]":
                depth -= 1
            elif ch == separator and depth == 0:
                parts.append("".join(current))
                current = []
                continue
        current.append(ch)
    parts.append("".join(current))
    return [p.strip() for p in parts if p.strip()]


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        return value[1:-1]
    return value


@dataclass(frozen=True)
class CommandArgument:
    """One argument of a command: a name plus optional bracketed parameters."""

    name: str
    parameters: Tuple[str, ...] = ()

    @classmethod
    def parse(cls, token: str, keep_quotes: bool = False) -> "CommandArgument":
        token = token.strip()
        if not token:
            raise MalformedFrame("empty argument", token)

        open_idx = token.find("[")
        if open_idx == -1:
            if "]" in token or "(" in token or ")" in token:
                raise MalformedFrame(f"unbalanced argument: {token}", token)
            return cls(name=token)

        if not token.endswith("]") or token.count("[") != token.count("]"):
            raise MalformedFrame(f"unbalanced brackets in argument: {token}", token)

        name = token[:open_idx].strip()
        if not name:
            raise MalformedFrame(f"argument without name: {token}", token)

        values = split_top_level(token[open_idx + 1:-1])
        if not keep_quotes:
            values = [_unquote(v) for v in values]
        return cls(name=name, parameters=tuple(values))

    def __str__(self) -> str:
        if not self.parameters:
            return self.name
        return f"{self.name}[{','.join(self.parameters)}]"


@dataclass(frozen=True)
class Command:
    """A parsed protocol frame. Argument order is wire order."""

    kind: CommandKind
    name: str
    arguments: Tuple[CommandArgument, ...] = ()
    raw: str = field(default="", compare=False)

    @property
    def object_id(self) -> int:
        """Numeric object id taken from the first argument, or -1."""
        if not self.arguments:
            return -1
        name = self.arguments[0].name
        if not _OBJECT_ID_RE.fullmatch(name):
            return -1
        return int(name)

    def has_argument(self, name: str) -> bool:
        if not name:
            return False
        return any(arg.name == name for arg in self.arguments)

    def argument_names(self) -> List[str]:
        return [arg.name for arg in self.arguments]

    def serialize(self) -> str:
        if not self.arguments:
            return f"{self.name}()"
        return f"{self.name}({', '.join(str(arg) for arg in self.arguments)})"

    def __str__(self) -> str:
        return self.serialize()


def parse(raw: str, keep_quotes: bool = False) -> Command:
    """Parse one line of wire text into a :class:`Command`.

    Raises:
        MalformedFrame: if the frame lacks brackets, has no verb, or any
            argument token cannot be parsed.
    """
    if raw is None or not raw.strip():
        raise MalformedFrame("command is empty", raw)

    text = raw.strip()
    open_idx = text.find("(")
    close_idx = text.rfind(")")
    if open_idx == -1 or close_idx == -1:
        raise MalformedFrame("open or closing bracket is missing", raw)
    if close_idx < open_idx:
        raise MalformedFrame("closing bracket precedes opening bracket", raw)

    name = text[:open_idx].strip()
    if not name:
        raise MalformedFrame("command name is missing", raw)

    arguments: List[CommandArgument] = []
    for token in split_top_level(text[open_idx + 1:close_idx].strip()):
        try:
            arguments.append(CommandArgument.parse(token, keep_quotes))
        except MalformedFrame as exc:
            raise MalformedFrame(f"parsing of argument list failed: {token}", raw) from exc

    return Command(
        kind=CommandKind.from_name(name),
        name=name,
        arguments=tuple(arguments),
        raw=raw,
    )


def serialize(command: Command) -> str:
    return command.serialize()
