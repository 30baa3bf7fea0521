"""Feedback module state with per-pin asymmetric debounce.

Each HSI-88 module reports 16 pins as four hex digits. A pin change is only
accepted once the pin has been stable for longer than the threshold of the
transition direction (``on`` for 0->1, ``off`` for 1->0); otherwise the old
bit is kept. Relay contacts on the track bounce, which is what this filters.
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from ..config import MODULE_BASE_ID, MODULE_POOL_SIZE, DebounceConfig

logger = logging.getLogger("middleman.feedback")

NUMBER_OF_PINS = 16
HEX_DIGITS = NUMBER_OF_PINS // 4

_HEX_RE = re.compile(r"^[0-9A-Fa-f]{4}$")

Clock = Callable[[], float]


def to_binary(hex_value: str) -> str:
    """``"022C"`` -> ``"0000001000101100"`` (MSB first, 4 bits per digit)."""
    return "".join(format(int(c, 16), "04b") for c in hex_value)


def to_hex(binary_value: str) -> str:
    """``"0000001000101100"`` -> ``"022C"``."""
    return format(int(binary_value, 2), f"0{len(binary_value) // 4}X")


def normalize_hex(raw: Optional[str]) -> Optional[str]:
    """Upper-case 4-digit hex, or ``None`` when ``raw`` is not a module state."""
    if raw is None:
        return None
    value = raw.strip().replace(" ", "")
    if value[:2].lower() == "0x":
        value = value[2:]
    if not _HEX_RE.match(value):
        return None
    return value.upper()


class FeedbackModuleState:
    """Debounced pin state of one 16-pin feedback module."""

    def __init__(
        self,
        module_object_id: int,
        debounce: Optional[DebounceConfig] = None,
        clock: Clock = time.monotonic,
    ):
        self.module_object_id = module_object_id
        self.debounce = debounce or DebounceConfig()
        self._clock = clock
        self._hex = "0" * HEX_DIGITS
        # None means "never", i.e. the first transition is always accepted.
        self._last_transition: List[Optional[float]] = [None] * NUMBER_OF_PINS
        self.change_count = 0

    @property
    def hardware_device_id(self) -> int:
        return self.module_object_id - MODULE_BASE_ID + 1

    @property
    def hex_state(self) -> str:
        return self._hex

    @property
    def binary_state(self) -> str:
        return to_binary(self._hex)

    def last_transition(self, pin: int) -> Optional[float]:
        return self._last_transition[pin]

    def _accepts(self, pin: int, new_bit: str, now: float) -> bool:
        threshold_ms = self.debounce.on_ms if new_bit == "1" else self.debounce.off_ms
        if threshold_ms <= 0:
            return True
        last = self._last_transition[pin]
        if last is None:
            return True
        return (now - last) * 1000.0 > threshold_ms

    def update(self, raw: str) -> bool:
        """Apply a raw 4-hex-digit reading; True iff at least one pin changed.

        Malformed input leaves the state untouched and returns False.
        """
        value = normalize_hex(raw)
        if value is None:
            logger.debug("Module %d: ignoring malformed state %r", self.module_object_id, raw)
            return False

        now = self._clock()
        old_bits = to_binary(self._hex)
        new_bits = to_binary(value)
        result = list(old_bits)
        changed = False

        for pin in range(NUMBER_OF_PINS):
            old_bit = old_bits[pin]
            new_bit = new_bits[pin]
            if old_bit == new_bit:
                # stable readings re-arm the debounce window
                self._last_transition[pin] = now
                continue
            if not self._accepts(pin, new_bit, now):
                continue
            result[pin] = new_bit
            self._last_transition[pin] = now
            self.change_count += 1
            changed = True

        self._hex = to_hex("".join(result))
        if changed:
            logger.debug("Module %d: %s -> %s", self.module_object_id, to_hex(old_bits), self._hex)
        return changed

    def __repr__(self) -> str:
        return f"FeedbackModuleState(id={self.module_object_id}, state={self._hex})"


class FeedbackPool:
    """Fixed set of module states keyed by station object id."""

    def __init__(
        self,
        debounce: Optional[DebounceConfig] = None,
        size: int = MODULE_POOL_SIZE,
        base_id: int = MODULE_BASE_ID,
        clock: Clock = time.monotonic,
    ):
        self.base_id = base_id
        self.size = size
        self._states: Dict[int, FeedbackModuleState] = {
            base_id + idx: FeedbackModuleState(base_id + idx, debounce, clock)
            for idx in range(size)
        }

    def is_module_id(self, object_id: int) -> bool:
        return self.base_id <= object_id < self.base_id + self.size

    def get(self, object_id: int) -> Optional[FeedbackModuleState]:
        return self._states.get(object_id)

    def for_hardware_id(self, device_id: int) -> Optional[FeedbackModuleState]:
        # the device counts modules from 1, the station from base_id
        return self._states.get(self.base_id + device_id - 1)

    def modules(self, object_ids: Iterable[int]) -> Iterator[FeedbackModuleState]:
        for oid in object_ids:
            state = self._states.get(oid)
            if state is not None:
                yield state

    def __len__(self) -> int:
        return len(self._states)

    def __iter__(self) -> Iterator[FeedbackModuleState]:
        return iter(self._states.values())


@dataclass
class DeviceLine:
    """A decoded line from the feedback interface."""

    raw: str
    kind: str
    module_count: int = 0
    states: Dict[int, str] = field(default_factory=dict)

    @property
    def is_version(self) -> bool:
        return self.kind == "v"

    @property
    def is_event(self) -> bool:
        return self.kind == "i"


GROUP_WIDTH = 6


def parse_device_line(line: str) -> DeviceLine:
    """Decode ``i``/``m`` state lines and recognise ``v`` version banners.

    Layout: ``i<NN>`` (or ``m<NN>``) followed by up to NN groups of
    ``<2-digit module id><4 hex digits>``. Incomplete trailing groups and
    groups with a non-numeric module id are skipped.
    """
    text = (line or "").strip()
    if not text:
        return DeviceLine(raw=text, kind="")

    kind = text[0].lower()
    if kind not in ("i", "m"):
        return DeviceLine(raw=text, kind=kind)

    count_txt = text[1:3]
    if not count_txt.isdigit():
        return DeviceLine(raw=text, kind=kind)
    module_count = int(count_txt)

    states: Dict[int, str] = {}
    payload = text[3:]
    for idx in range(module_count):
        group = payload[idx * GROUP_WIDTH:(idx + 1) * GROUP_WIDTH]
        if len(group) < GROUP_WIDTH:
            break
        module_txt, state_txt = group[:2], group[2:]
        if not module_txt.isdigit():
            continue
        states[int(module_txt)] = state_txt

    return DeviceLine(raw=text, kind=kind, module_count=module_count, states=states)
