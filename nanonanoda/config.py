from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .allocator import ChipInstance
from .analysis import DEFAULT_NOISE_FLOOR, DEFAULT_WINDOW_SIZE
from .chips import ChipKind, chip_kind_from_name
from .errors import InvalidConfigError
from .vgm import VGM_SAMPLE_RATE

_LOGGER = logging.getLogger("nanonanoda.config")

ChipName = Literal["ymf262", "ym2203"]
OutputFormat = Literal["wav", "vgm"]


class ChipSpec(BaseModel):
    """One chip kind with an instance count and voices per instance."""

    name: ChipName
    count: int = Field(default=1, ge=1)
    voices: int | None = Field(default=None, ge=1)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def kind(self) -> ChipKind:
        return ChipKind(self.name)

    @property
    def voices_per_instance(self) -> int:
        return self.kind.traits.voices if self.voices is None else self.voices

    @model_validator(mode="after")
    def _check_voices(self) -> "ChipSpec":
        limit = self.kind.traits.voices
        if self.voices is not None and self.voices > limit:
            raise ValueError(f"{self.name} supports at most {limit} voices, got {self.voices}")
        return self

    @classmethod
    def parse(cls, text: str) -> "ChipSpec":
        """Parse ``name[:count[:voices]]``, e.g. ``ym2203:2:3``."""
        parts = [part.strip() for part in text.strip().split(":")]
        if not parts[0] or len(parts) > 3:
            raise InvalidConfigError(f"Chip spec {text!r} must look like name[:count[:voices]]")
        kind = chip_kind_from_name(parts[0])
        numbers: list[int] = []
        for part in parts[1:]:
            try:
                numbers.append(int(part))
            except ValueError as exc:
                raise InvalidConfigError(f"Chip spec {text!r}: {part!r} is not an integer") from exc
        payload: dict[str, Any] = {"name": kind.value}
        if numbers:
            payload["count"] = numbers[0]
        if len(numbers) > 1:
            payload["voices"] = numbers[1]
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise InvalidConfigError(f"Chip spec {text!r}: {exc}") from exc

    def __str__(self) -> str:
        return f"{self.name}:{self.count}:{self.voices_per_instance}"


DEFAULT_CHIPS: tuple[ChipSpec, ...] = (
    ChipSpec(name="ymf262", count=1, voices=18),
    ChipSpec(name="ym2203", count=2, voices=3),
)


class ConverterConfig(BaseModel):
    """Settings shared by the VGM and resynthesis paths."""

    window_size: int = Field(default=DEFAULT_WINDOW_SIZE, ge=2)
    hop_size: int | None = Field(default=None, ge=1)
    output_sample_rate: int = Field(default=VGM_SAMPLE_RATE, gt=0)
    format: OutputFormat = "wav"
    chips: tuple[ChipSpec, ...] = DEFAULT_CHIPS
    max_peaks: int | None = Field(default=None, ge=0)
    noise_floor: float = Field(default=DEFAULT_NOISE_FLOOR, ge=0.0)
    reference_magnitude: float = Field(default=1.0, gt=0.0)
    crossfade: int | None = Field(default=None, ge=0)
    loop: bool = False

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("chips", mode="before")
    @classmethod
    def _coerce_chips(cls, value: Any) -> Any:
        if isinstance(value, str):
            return (ChipSpec.parse(value),)
        if isinstance(value, (list, tuple)):
            return tuple(ChipSpec.parse(item) if isinstance(item, str) else item for item in value)
        return value

    @field_validator("chips")
    @classmethod
    def _require_chips(cls, value: tuple[ChipSpec, ...]) -> tuple[ChipSpec, ...]:
        if not value:
            raise ValueError("at least one chip must be configured")
        return value

    @model_validator(mode="after")
    def _check_hop(self) -> "ConverterConfig":
        if self.hop_size is not None and self.hop_size > self.window_size:
            raise ValueError(
                f"hop_size ({self.hop_size}) must not exceed window_size ({self.window_size})"
            )
        # At most two windows may overlap, or the fade ramps stop summing to one.
        if self.crossfade is not None and self.crossfade > self.effective_hop:
            raise ValueError(
                f"crossfade ({self.crossfade}) must not exceed the hop ({self.effective_hop})"
            )
        return self

    @classmethod
    def from_options(cls, **options: Any) -> "ConverterConfig":
        """Build a config from keyword options; ``None`` values take the defaults."""
        payload = {key: value for key, value in options.items() if value is not None}
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            _LOGGER.warning("Invalid converter options: %s", exc)
            raise InvalidConfigError(str(exc)) from exc

    @property
    def effective_hop(self) -> int:
        return self.window_size if self.hop_size is None else self.hop_size

    @property
    def total_voices(self) -> int:
        return sum(spec.count * spec.voices_per_instance for spec in self.chips)

    @property
    def effective_max_peaks(self) -> int:
        return self.total_voices if self.max_peaks is None else self.max_peaks

    def instances(self) -> list[ChipInstance]:
        """Fresh chip instances with idle voices; ports count instances per kind."""
        seen: dict[ChipKind, int] = {}
        out: list[ChipInstance] = []
        for spec in self.chips:
            for _ in range(spec.count):
                port = seen.get(spec.kind, 0)
                seen[spec.kind] = port + 1
                out.append(
                    ChipInstance.create(len(out), spec.kind, spec.voices_per_instance, port=port)
                )
        return out
