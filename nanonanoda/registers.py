"""Per-chip register programming.

Every voice is a plain sine: on the YMF262 a 2-op channel whose modulator is
fully attenuated, on the YM2203 an algorithm-7 channel where only slot 1 is
audible. Pitch and level changes then only touch the F-number and carrier TL
registers. YMF262 addresses carry the register bank in bit 8.
"""

from __future__ import annotations

from .chips import ChipKind, FrequencyCode
from .errors import MappingOverflowError
from .vgm import RegisterWrite

# Modulator/carrier operator numbers for each 2-op OPL3 channel.
OPL3_OPS_BY_CHANNEL: tuple[tuple[int, int], ...] = (
    (0, 3), (1, 4), (2, 5), (6, 9), (7, 10), (8, 11),
    (12, 15), (13, 16), (14, 17), (18, 21), (19, 22), (20, 23),
    (24, 27), (25, 28), (26, 29), (30, 33), (31, 34), (32, 35),
)  # fmt: skip
_OPL3_OP_OFFSETS: tuple[int, ...] = (
    0x00, 0x01, 0x02, 0x03, 0x04, 0x05, 0x08, 0x09, 0x0A,
    0x0B, 0x0C, 0x0D, 0x10, 0x11, 0x12, 0x13, 0x14, 0x15,
)  # fmt: skip

_OPL3_KEY_ON = 0x20
_OPL3_EG_SUSTAIN_MULT1 = 0x21
_OPL3_AR_DR = 0xF0
_OPL3_SL_RR = 0x0F
_OPL3_OUTPUT_LR = 0x30

_OPN_KEY_REGISTER = 0x28
_OPN_SLOT1 = 0x10
_OPN_ALGORITHM_7 = 0x07
_OPN_DT_MUL = 0x01
_OPN_KS_AR = 0x1F
_OPN_SL_RR = 0x0F
# Slot register offsets in address order: S1, S3, S2, S4.
_OPN_SLOT_OFFSETS = (0x00, 0x04, 0x08, 0x0C)


def _check_channel(kind: ChipKind, channel: int) -> None:
    if not 0 <= channel < kind.traits.voices:
        raise MappingOverflowError(f"{kind} has no channel {channel}")


def _opl3_operator_address(operator: int, register: int) -> int:
    bank, offset = divmod(operator, 18)
    return (bank << 8) | (register + _OPL3_OP_OFFSETS[offset])


def _opl3_channel_address(channel: int, register: int) -> int:
    bank, index = divmod(channel, 9)
    return (bank << 8) | (register + index)


def _opl3_carrier_tl(channel: int) -> int:
    _, carrier = OPL3_OPS_BY_CHANNEL[channel]
    return _opl3_operator_address(carrier, 0x40)


def _opl3_block_byte(code: FrequencyCode, key_on: bool) -> int:
    value = ((code.block & 0x07) << 2) | ((code.fnum >> 8) & 0x03)
    return value | _OPL3_KEY_ON if key_on else value


def _opn_block_byte(code: FrequencyCode) -> int:
    return ((code.block & 0x07) << 3) | ((code.fnum >> 8) & 0x07)


def init_writes(instance: int, kind: ChipKind) -> list[RegisterWrite]:
    """Reset every channel of one chip to a silent, keyed-off sine voice."""
    max_tl = kind.traits.max_tl
    out: list[RegisterWrite] = []

    def put(address: int, value: int) -> None:
        out.append(RegisterWrite(instance, address, value))

    match kind:
        case ChipKind.OPL3:
            put(0x105, 0x01)  # OPL3 mode
            put(0x104, 0x00)  # all channels 2-op
            put(0x001, 0x20)  # waveform select enable
            put(0x008, 0x00)
            put(0x0BD, 0x00)  # rhythm off
            for channel in range(kind.traits.voices):
                for operator in OPL3_OPS_BY_CHANNEL[channel]:
                    put(_opl3_operator_address(operator, 0x20), _OPL3_EG_SUSTAIN_MULT1)
                    put(_opl3_operator_address(operator, 0x40), max_tl)
                    put(_opl3_operator_address(operator, 0x60), _OPL3_AR_DR)
                    put(_opl3_operator_address(operator, 0x80), _OPL3_SL_RR)
                    put(_opl3_operator_address(operator, 0xE0), 0x00)
                put(_opl3_channel_address(channel, 0xC0), _OPL3_OUTPUT_LR)
                put(_opl3_channel_address(channel, 0xA0), 0x00)
                put(_opl3_channel_address(channel, 0xB0), 0x00)
        case ChipKind.OPN:
            put(0x2D, 0x00)  # FM prescaler 1/6
            put(0x27, 0x00)
            put(0x07, 0x3F)  # SSG tone and noise off
            for register in (0x08, 0x09, 0x0A):
                put(register, 0x00)
            for channel in range(kind.traits.voices):
                put(_OPN_KEY_REGISTER, channel)
                put(0xB0 + channel, _OPN_ALGORITHM_7)
                for offset in _OPN_SLOT_OFFSETS:
                    put(0x30 + offset + channel, _OPN_DT_MUL)
                    put(0x40 + offset + channel, max_tl)
                    put(0x50 + offset + channel, _OPN_KS_AR)
                    put(0x60 + offset + channel, 0x00)
                    put(0x70 + offset + channel, 0x00)
                    put(0x80 + offset + channel, _OPN_SL_RR)
                    put(0x90 + offset + channel, 0x00)
                put(0xA4 + channel, 0x00)
                put(0xA0 + channel, 0x00)
    return out


def level_writes(instance: int, kind: ChipKind, channel: int, tl: int) -> list[RegisterWrite]:
    _check_channel(kind, channel)
    tl = min(max(int(tl), 0), kind.traits.max_tl)
    match kind:
        case ChipKind.OPL3:
            return [RegisterWrite(instance, _opl3_carrier_tl(channel), tl)]
        case ChipKind.OPN:
            return [RegisterWrite(instance, 0x40 + channel, tl)]


def frequency_writes(
    instance: int, kind: ChipKind, channel: int, code: FrequencyCode, *, key_on: bool = True
) -> list[RegisterWrite]:
    """F-number/block update for a voice, preserving its key state on OPL3."""
    _check_channel(kind, channel)
    match kind:
        case ChipKind.OPL3:
            return [
                RegisterWrite(instance, _opl3_channel_address(channel, 0xA0), code.fnum & 0xFF),
                RegisterWrite(
                    instance,
                    _opl3_channel_address(channel, 0xB0),
                    _opl3_block_byte(code, key_on),
                ),
            ]
        case ChipKind.OPN:
            # The high byte is latched and only applied by the following A0 write.
            return [
                RegisterWrite(instance, 0xA4 + channel, _opn_block_byte(code)),
                RegisterWrite(instance, 0xA0 + channel, code.fnum & 0xFF),
            ]


def key_on_writes(
    instance: int, kind: ChipKind, channel: int, code: FrequencyCode, tl: int
) -> list[RegisterWrite]:
    writes = level_writes(instance, kind, channel, tl)
    writes += frequency_writes(instance, kind, channel, code, key_on=True)
    if kind is ChipKind.OPN:
        writes.append(RegisterWrite(instance, _OPN_KEY_REGISTER, _OPN_SLOT1 | channel))
    return writes


def key_off_writes(
    instance: int, kind: ChipKind, channel: int, code: FrequencyCode
) -> list[RegisterWrite]:
    """Drive the carrier to full attenuation, then release the key."""
    writes = level_writes(instance, kind, channel, kind.traits.max_tl)
    match kind:
        case ChipKind.OPL3:
            writes.append(
                RegisterWrite(
                    instance,
                    _opl3_channel_address(channel, 0xB0),
                    _opl3_block_byte(code, key_on=False),
                )
            )
        case ChipKind.OPN:
            writes.append(RegisterWrite(instance, _OPN_KEY_REGISTER, channel))
    return writes


def is_key_on(kind: ChipKind, write: RegisterWrite) -> bool:
    """True when ``write`` starts a note on a chip of ``kind``."""
    register = write.register_address & 0xFF
    match kind:
        case ChipKind.OPL3:
            return 0xB0 <= register <= 0xB8 and bool(write.data_byte & _OPL3_KEY_ON)
        case ChipKind.OPN:
            return register == _OPN_KEY_REGISTER and bool(write.data_byte & 0xF0)


def is_level_write(kind: ChipKind, write: RegisterWrite) -> bool:
    register = write.register_address & 0xFF
    match kind:
        case ChipKind.OPL3:
            return 0x40 <= register <= 0x55
        case ChipKind.OPN:
            return 0x40 <= register <= 0x4E
