import pytest

from middleman.errors import MalformedFrame
from middleman.protocol import Command, CommandArgument, CommandKind, parse, serialize
from middleman.protocol.command import split_top_level


def test_parse_get_with_object_id():
    cmd = parse("get(100, state)")
    assert cmd.kind is CommandKind.GET
    assert cmd.name == "get"
    assert cmd.object_id == 100
    assert cmd.argument_names() == ["100", "state"]
    assert cmd.raw == "get(100, state)"


def test_parse_kinds():
    assert parse("request(26, view)").kind is CommandKind.REQUEST
    assert parse("release(26, view)").kind is CommandKind.RELEASE
    assert parse("set(1000, speed[10])").kind is CommandKind.SET
    assert parse("queryObjects(26, ports)").kind is CommandKind.QUERY_OBJECTS


def test_unknown_verb_keeps_wire_name():
    cmd = parse("frobnicate(12)")
    assert cmd.kind is CommandKind.UNKNOWN
    assert cmd.name == "frobnicate"
    assert cmd.serialize() == "frobnicate(12)"


def test_object_id_missing_or_non_numeric():
    assert parse("get()").object_id == -1
    assert parse("get(view)").object_id == -1


@pytest.mark.parametrize("token", ["1_0", "+5", "\uff12\uff16", "0x1a"])
def test_object_id_requires_ascii_decimal(token):
    cmd = Command(CommandKind.GET, "get", (CommandArgument(token),))
    assert cmd.object_id == -1


def test_object_id_negative():
    assert parse("get(-3)").object_id == -3


def test_bracketed_parameters():
    cmd = parse("set(1000, speed[10], dir[0])")
    assert cmd.arguments[1] == CommandArgument("speed", ("10",))
    assert cmd.has_argument("dir")
    assert not cmd.has_argument("name")
    assert not cmd.has_argument("")


def test_quotes_stripped_or_kept():
    stripped = parse('set(1000, name["Track, 1"])')
    kept = parse('set(1000, name["Track, 1"])', keep_quotes=True)
    assert stripped.arguments[1].parameters == ("Track, 1",)
    assert kept.arguments[1].parameters == ('"Track, 1"',)
    assert str(kept.arguments[1]) == 'name["Track, 1"]'


def test_multiple_parameters():
    arg = CommandArgument.parse("addr[1, 2 ,3]")
    assert arg.name == "addr"
    assert arg.parameters == ("1", "2", "3")


def test_empty_entries_ignored():
    cmd = parse("get(100, , state,)")
    assert cmd.argument_names() == ["100", "state"]


def test_whitespace_tolerated():
    cmd = parse("  get( 100 ,  view )  ")
    assert cmd.object_id == 100
    assert cmd.serialize() == "get(100, view)"


def test_serialize_normalizes_spacing():
    assert serialize(parse("get(100,state)")) == "get(100, state)"
    assert str(parse("request()")) == "request()"
    assert parse('set(5, name["a b"])', keep_quotes=True).serialize() == 'set(5, name["a b"])'


def test_commands_compare_without_raw():
    assert parse("get(100,state)") == parse("get(100, state)")
    assert isinstance(parse("get(1)"), Command)


@pytest.mark.parametrize(
    "frame",
    ["", "   ", "get 100", "get(100", "get100)", "get)100(", "(100)"],
)
def test_malformed_frames(frame):
    with pytest.raises(MalformedFrame):
        parse(frame)


def test_bad_argument_names_token():
    with pytest.raises(MalformedFrame) as exc_info:
        parse("get(100, state[1)")
    assert "state[1" in str(exc_info.value)
    assert exc_info.value.frame == "get(100, state[1)"


def test_argument_without_name():
    with pytest.raises(MalformedFrame):
        CommandArgument.parse("[1]")
    with pytest.raises(MalformedFrame):
        CommandArgument.parse("1]")


def test_split_top_level_respects_brackets_and_quotes():
    assert split_top_level('a, b[1,2], c["x,y"]') == ["a", "b[1,2]", 'c["x,y"]']
