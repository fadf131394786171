"""Command stream accumulation and the VGM 1.71 container.

Body opcodes written by this module:

    0x55 aa dd    YM2203 write, first chip   (0xA5 for the second chip)
    0x5E aa dd    YMF262 bank 0 write        (0xAE for the second chip)
    0x5F aa dd    YMF262 bank 1 write        (0xAF for the second chip)
    0x61 nn nn    wait n samples (1..65535)
    0x62          wait 735 samples (1/60 s)
    0x63          wait 882 samples (1/50 s)
    0x7n          wait n+1 samples (1..16)
    0x66          end of sound data
"""

from __future__ import annotations

import logging
import struct
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TypeAlias

from .chips import ChipKind
from .errors import (
    InvalidConfigError,
    MappingOverflowError,
    SerializationError,
    UnsupportedInputError,
)

_LOGGER = logging.getLogger("nanonanoda.vgm")

VGM_IDENT = b"Vgm "
VGM_VERSION = 0x00000171
VGM_SAMPLE_RATE = 44_100
HEADER_SIZE = 0x100
DUAL_CHIP_BIT = 0x4000_0000
GD3_IDENT = b"Gd3 "
GD3_VERSION = 0x00000100
MAX_INSTANCES_PER_KIND = 2

_WAIT_WORD = 0x61
_WAIT_60HZ = 0x62
_WAIT_50HZ = 0x63
_END = 0x66
_WAIT_SHORT = 0x70
_SAMPLES_60HZ = 735
_SAMPLES_50HZ = 882
_SECOND_CHIP_DELTA = 0x50

# (kind, bank) -> opcode for the first chip of that kind
_WRITE_OPCODES: dict[tuple[ChipKind, int], int] = {
    (ChipKind.OPN, 0): 0x55,
    (ChipKind.OPL3, 0): 0x5E,
    (ChipKind.OPL3, 1): 0x5F,
}
_OPCODE_TARGETS: dict[int, tuple[ChipKind, int, int]] = {
    opcode + delta: (kind, bank, port)
    for (kind, bank), opcode in _WRITE_OPCODES.items()
    for port, delta in enumerate((0, _SECOND_CHIP_DELTA))
}


@dataclass(frozen=True, slots=True)
class RegisterWrite:
    chip_instance: int
    register_address: int
    data_byte: int


@dataclass(frozen=True, slots=True)
class Wait:
    sample_count: int


@dataclass(frozen=True, slots=True)
class End:
    pass


Event: TypeAlias = RegisterWrite | Wait | End


@dataclass(frozen=True, slots=True)
class ChipSlot:
    """How one configured chip instance is addressed inside the container."""

    index: int
    kind: ChipKind
    port: int
    clock_hz: int


@dataclass(frozen=True, slots=True)
class Gd3Tag:
    track_name_en: str | None = None
    track_name_jp: str | None = None
    game_name_en: str | None = None
    game_name_jp: str | None = None
    system_name_en: str | None = None
    system_name_jp: str | None = None
    author_name_en: str | None = None
    author_name_jp: str | None = None
    release_date: str | None = None
    creator: str | None = None
    notes: str | None = None

    def fields(self) -> tuple[str | None, ...]:
        return (
            self.track_name_en,
            self.track_name_jp,
            self.game_name_en,
            self.game_name_jp,
            self.system_name_en,
            self.system_name_jp,
            self.author_name_en,
            self.author_name_jp,
            self.release_date,
            self.creator,
            self.notes,
        )

    def to_bytes(self) -> bytes:
        payload = bytearray()
        for text in self.fields():
            payload.extend((text or "").encode("utf-16-le"))
            payload.extend(b"\x00\x00")
        return GD3_IDENT + struct.pack("<II", GD3_VERSION, len(payload)) + bytes(payload)


def chip_slots(kinds: Sequence[tuple[ChipKind, int | None]]) -> tuple[ChipSlot, ...]:
    """Assign container ports to instances in configuration order.

    ``kinds`` holds ``(kind, clock_hz)`` pairs; ``None`` means the kind's default clock.
    """
    seen: dict[ChipKind, int] = {}
    slots: list[ChipSlot] = []
    for index, (kind, clock_hz) in enumerate(kinds):
        port = seen.get(kind, 0)
        if port >= MAX_INSTANCES_PER_KIND:
            raise InvalidConfigError(
                f"VGM can address at most {MAX_INSTANCES_PER_KIND} {kind} instances"
            )
        seen[kind] = port + 1
        clock = kind.traits.default_clock_hz if clock_hz is None else int(clock_hz)
        slots.append(ChipSlot(index=index, kind=kind, port=port, clock_hz=clock))
    return tuple(slots)


class CommandStream:
    """Ordered register writes and waits, finalized once into VGM bytes."""

    def __init__(self, slots: Sequence[ChipSlot]) -> None:
        self._slots = tuple(slots)
        self._events: list[Event] = []
        self._loop_index: int | None = None
        self._total_samples = 0
        self._finalized = False

    @property
    def slots(self) -> tuple[ChipSlot, ...]:
        return self._slots

    @property
    def events(self) -> tuple[Event, ...]:
        return tuple(self._events)

    @property
    def total_samples(self) -> int:
        return self._total_samples

    @property
    def loop_index(self) -> int | None:
        return self._loop_index

    def _check_open(self) -> None:
        if self._finalized:
            raise SerializationError("Command stream is already finalized")

    def write(self, chip_instance: int, register_address: int, data_byte: int) -> None:
        self._check_open()
        if not 0 <= chip_instance < len(self._slots):
            raise MappingOverflowError(f"Chip instance {chip_instance} is not configured")
        space = self._slots[chip_instance].kind.traits.register_space
        if not 0 <= register_address < space:
            raise MappingOverflowError(
                f"Register 0x{register_address:X} outside "
                f"{self._slots[chip_instance].kind} space 0x{space:X}"
            )
        if not 0 <= data_byte <= 0xFF:
            raise MappingOverflowError(f"Data byte {data_byte} does not fit in 8 bits")
        self._events.append(RegisterWrite(chip_instance, register_address, data_byte))

    def extend(self, writes: Iterable[RegisterWrite]) -> None:
        for item in writes:
            self.write(item.chip_instance, item.register_address, item.data_byte)

    def wait(self, sample_count: int) -> None:
        self._check_open()
        if sample_count < 0:
            raise MappingOverflowError(f"Wait of {sample_count} samples is negative")
        if sample_count == 0:
            return
        self._events.append(Wait(sample_count))
        self._total_samples += sample_count

    def mark_loop(self) -> None:
        self._check_open()
        self._loop_index = len(self._events)

    def finalize(self, gd3: Gd3Tag | None = None) -> bytes:
        self._check_open()
        if self._loop_index is not None and self._loop_index >= len(self._events):
            raise SerializationError("Loop marker is not followed by any event")
        self._events.append(End())
        self._finalized = True

        body = bytearray()
        loop_byte: int | None = None
        loop_samples = 0
        elapsed = 0
        for position, event in enumerate(self._events):
            if position == self._loop_index:
                loop_byte = len(body)
                loop_samples = self._total_samples - elapsed
            match event:
                case RegisterWrite():
                    body.extend(self._encode_write(event))
                case Wait(sample_count=count):
                    body.extend(encode_wait(count))
                    elapsed += count
                case End():
                    body.append(_END)

        header = self._header(len(body), loop_byte, loop_samples, gd3 is not None)
        data = header + bytes(body)
        if gd3 is not None:
            data += gd3.to_bytes()
        data = bytearray(data)
        struct.pack_into("<I", data, 0x04, len(data) - 0x04)
        _LOGGER.debug(
            "Finalized VGM: %d events, %d samples, %d bytes",
            len(self._events),
            self._total_samples,
            len(data),
        )
        return bytes(data)

    def _encode_write(self, event: RegisterWrite) -> bytes:
        slot = self._slots[event.chip_instance]
        bank = event.register_address >> 8
        try:
            opcode = _WRITE_OPCODES[(slot.kind, bank)]
        except KeyError as exc:
            raise MappingOverflowError(
                f"{slot.kind} has no bank {bank} (register 0x{event.register_address:X})"
            ) from exc
        if slot.port:
            opcode += _SECOND_CHIP_DELTA
        return bytes((opcode, event.register_address & 0xFF, event.data_byte))

    def _header(
        self, body_size: int, loop_byte: int | None, loop_samples: int, has_gd3: bool
    ) -> bytes:
        header = bytearray(HEADER_SIZE)
        header[0x00:0x04] = VGM_IDENT
        struct.pack_into("<I", header, 0x08, VGM_VERSION)
        if has_gd3:
            # GD3 follows the body; the field is relative to 0x14.
            struct.pack_into("<I", header, 0x14, HEADER_SIZE + body_size - 0x14)
        struct.pack_into("<I", header, 0x18, self._total_samples)
        if loop_byte is not None:
            struct.pack_into("<I", header, 0x1C, HEADER_SIZE + loop_byte - 0x1C)
            struct.pack_into("<I", header, 0x20, loop_samples)
        struct.pack_into("<I", header, 0x34, HEADER_SIZE - 0x34)

        clocks: dict[ChipKind, int] = {}
        for slot in self._slots:
            clock = clocks.get(slot.kind, slot.clock_hz)
            if slot.port:
                clock |= DUAL_CHIP_BIT
            clocks[slot.kind] = clock
        for kind, clock in clocks.items():
            struct.pack_into("<I", header, kind.traits.vgm_clock_offset, clock)
        return bytes(header)


def encode_wait(sample_count: int) -> bytes:
    out = bytearray()
    remaining = sample_count
    while remaining > 0:
        if remaining <= 16:
            out.append(_WAIT_SHORT + remaining - 1)
            break
        if remaining == _SAMPLES_60HZ:
            out.append(_WAIT_60HZ)
            break
        if remaining == _SAMPLES_50HZ:
            out.append(_WAIT_50HZ)
            break
        chunk = min(remaining, 0xFFFF)
        out.append(_WAIT_WORD)
        out.extend(struct.pack("<H", chunk))
        remaining -= chunk
    return bytes(out)


# -----------------------------------------------------------------------------
# Reading
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class VgmTarget:
    kind: ChipKind
    port: int


@dataclass(slots=True)
class VgmFile:
    version: int
    eof_offset: int
    total_samples: int
    loop_offset: int
    loop_samples: int
    data_offset: int
    gd3_offset: int
    clocks: dict[ChipKind, int]
    events: list[Event] = field(default_factory=list)
    targets: list[VgmTarget] = field(default_factory=list)
    loop_event_index: int | None = None
    gd3: Gd3Tag | None = None

    def writes_for(self, kind: ChipKind, port: int = 0) -> list[RegisterWrite]:
        """Register writes addressed to one chip, in stream order."""
        wanted = VgmTarget(kind, port)
        return [
            event
            for event, target in zip(self.events, self.targets)
            if isinstance(event, RegisterWrite) and target == wanted
        ]

    @property
    def wait_total(self) -> int:
        return sum(event.sample_count for event in self.events if isinstance(event, Wait))


_NO_TARGET = VgmTarget(ChipKind.OPL3, -1)


def _u32(data: bytes, offset: int) -> int:
    return int(struct.unpack_from("<I", data, offset)[0])


def _parse_gd3(data: bytes, start: int) -> Gd3Tag:
    if data[start : start + 4] != GD3_IDENT:
        raise UnsupportedInputError(f"Missing GD3 ident at 0x{start:X}")
    length = _u32(data, start + 8)
    payload = data[start + 12 : start + 12 + length].decode("utf-16-le")
    texts = payload.split("\x00")[:11]
    texts += [""] * (11 - len(texts))
    return Gd3Tag(*(text or None for text in texts))


def parse_vgm(data: bytes) -> VgmFile:
    """Decode a VGM file produced by :class:`CommandStream`.

    Register writes are reported with ``chip_instance`` set to the chip port
    (0 or 1) and, for YMF262, the bank folded into bit 8 of the address;
    :attr:`VgmFile.targets` names the chip kind for each event.
    """
    if len(data) < 0x40 or data[0:4] != VGM_IDENT:
        raise UnsupportedInputError("Not a VGM file")
    version = _u32(data, 0x08)
    data_offset = _u32(data, 0x34)
    body_start = 0x40 if data_offset == 0 else 0x34 + data_offset
    loop_offset = _u32(data, 0x1C)
    loop_byte = 0x1C + loop_offset if loop_offset else None
    gd3_offset = _u32(data, 0x14)

    clocks: dict[ChipKind, int] = {}
    for kind in ChipKind:
        offset = kind.traits.vgm_clock_offset
        if offset + 4 <= body_start:
            clock = _u32(data, offset)
            if clock:
                clocks[kind] = clock

    parsed = VgmFile(
        version=version,
        eof_offset=_u32(data, 0x04),
        total_samples=_u32(data, 0x18),
        loop_offset=loop_offset,
        loop_samples=_u32(data, 0x20),
        data_offset=data_offset,
        gd3_offset=gd3_offset,
        clocks=clocks,
    )

    pos = body_start
    while pos < len(data):
        if pos == loop_byte:
            parsed.loop_event_index = len(parsed.events)
        opcode = data[pos]
        if opcode in _OPCODE_TARGETS:
            kind, bank, port = _OPCODE_TARGETS[opcode]
            register, value = data[pos + 1], data[pos + 2]
            parsed.events.append(RegisterWrite(port, (bank << 8) | register, value))
            parsed.targets.append(VgmTarget(kind, port))
            pos += 3
        elif opcode == _WAIT_WORD:
            parsed.events.append(Wait(int(struct.unpack_from("<H", data, pos + 1)[0])))
            parsed.targets.append(_NO_TARGET)
            pos += 3
        elif opcode == _WAIT_60HZ:
            parsed.events.append(Wait(_SAMPLES_60HZ))
            parsed.targets.append(_NO_TARGET)
            pos += 1
        elif opcode == _WAIT_50HZ:
            parsed.events.append(Wait(_SAMPLES_50HZ))
            parsed.targets.append(_NO_TARGET)
            pos += 1
        elif _WAIT_SHORT <= opcode <= _WAIT_SHORT + 0x0F:
            parsed.events.append(Wait(opcode - _WAIT_SHORT + 1))
            parsed.targets.append(_NO_TARGET)
            pos += 1
        elif opcode == _END:
            parsed.events.append(End())
            parsed.targets.append(_NO_TARGET)
            break
        else:
            raise UnsupportedInputError(f"Unsupported VGM opcode 0x{opcode:02X} at 0x{pos:X}")

    if gd3_offset:
        parsed.gd3 = _parse_gd3(data, 0x14 + gd3_offset)
    return parsed
