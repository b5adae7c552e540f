"""Centralised configuration models leveraging Pydantic."""

from __future__ import annotations

import os
import re
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from .rates import SINE_STEPS, RateShape, RateUnit

PLACEHOLDER_PATTERN = re.compile(r"\{\{([A-Z0-9_]+)\}\}")

DEFAULT_MAX_CHUNK_BYTES = 1 << 24
ONE_DAY_SEC = 24 * 60 * 60


def _is_placeholder(value: object) -> bool:
    return isinstance(value, str) and PLACEHOLDER_PATTERN.fullmatch(value.strip()) is not None


def _resolve_int(value: object, placeholder: str, default: int) -> int:
    if value is None or _is_placeholder(value):
        return default
    if isinstance(value, bool):
        raise TypeError(f"{placeholder} must resolve to an integer value")
    if isinstance(value, (int, str)):
        return int(value)
    raise TypeError(f"{placeholder} must resolve to an integer value")


def _resolve_positive_int(value: object, placeholder: str, default: int) -> int:
    resolved = _resolve_int(value, placeholder, default)
    if resolved <= 0:
        raise ValueError(f"{placeholder} must be a positive integer")
    return resolved


def _resolve_non_negative_int(value: object, placeholder: str, default: int) -> int:
    resolved = _resolve_int(value, placeholder, default)
    if resolved < 0:
        raise ValueError(f"{placeholder} must be >= 0")
    return resolved


def _resolve_bool(value: object, placeholder: str, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        text = value.strip()
        if PLACEHOLDER_PATTERN.fullmatch(text):
            return default
        lowered = text.lower()
        if lowered in {"true", "1", "yes", "on"}:
            return True
        if lowered in {"false", "0", "no", "off"}:
            return False
        raise ValueError(f"{placeholder} must be a boolean string (true/false)")
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return bool(value)
    raise ValueError(f"{placeholder} must resolve to a boolean value")


def _resolve_enum(value: object, placeholder: str, enum_cls: type, default: object) -> object:
    if value is None or _is_placeholder(value):
        return default
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        name = value.strip().upper().replace("-", "_")
        try:
            return enum_cls[name]
        except KeyError as exc:
            choices = ", ".join(member.name for member in enum_cls)
            raise ValueError(f"{placeholder} must be one of {choices}") from exc
    raise TypeError(f"{placeholder} must be a string")


class GeneratorSettings(BaseModel):
    first_event_rate: int = Field(default=10_000)
    next_event_rate: int | None = Field(default=None)
    rate_unit: RateUnit = Field(default=RateUnit.PER_SECOND)
    rate_shape: RateShape = Field(default=RateShape.SINE)
    rate_period_sec: int = Field(default=600)
    num_event_generators: int = Field(default=100)
    num_events: int = Field(default=100_000)
    watermark_holdback_sec: int = Field(default=0)
    use_wallclock_event_time: bool = Field(default=False)
    is_rate_limited: bool = Field(default=True)
    sine_steps: int = Field(default=SINE_STEPS)

    @field_validator("first_event_rate", mode="before")
    def _v_first_rate(cls, v: object) -> int:
        return _resolve_positive_int(v, "{{FIRST_EVENT_RATE}}", 10_000)

    @field_validator("next_event_rate", mode="before")
    def _v_next_rate(cls, v: object) -> int | None:
        if v is None or _is_placeholder(v):
            return None
        return _resolve_positive_int(v, "{{NEXT_EVENT_RATE}}", 10_000)

    @field_validator("rate_unit", mode="before")
    def _v_rate_unit(cls, v: object) -> object:
        return _resolve_enum(v, "{{RATE_UNIT}}", RateUnit, RateUnit.PER_SECOND)

    @field_validator("rate_shape", mode="before")
    def _v_rate_shape(cls, v: object) -> object:
        return _resolve_enum(v, "{{RATE_SHAPE}}", RateShape, RateShape.SINE)

    @field_validator("rate_period_sec", mode="before")
    def _v_rate_period(cls, v: object) -> int:
        return _resolve_non_negative_int(v, "{{RATE_PERIOD_SEC}}", 600)

    @field_validator("num_event_generators", mode="before")
    def _v_generators(cls, v: object) -> int:
        return _resolve_positive_int(v, "{{NUM_EVENT_GENERATORS}}", 100)

    @field_validator("num_events", mode="before")
    def _v_num_events(cls, v: object) -> int:
        # 0 selects unbounded streaming.
        return _resolve_non_negative_int(v, "{{NUM_EVENTS}}", 100_000)

    @field_validator("watermark_holdback_sec", mode="before")
    def _v_holdback(cls, v: object) -> int:
        return _resolve_non_negative_int(v, "{{WATERMARK_HOLDBACK_SEC}}", 0)

    @field_validator("use_wallclock_event_time", mode="before")
    def _v_wallclock(cls, v: object) -> bool:
        return _resolve_bool(v, "{{USE_WALLCLOCK_EVENT_TIME}}", False)

    @field_validator("is_rate_limited", mode="before")
    def _v_rate_limited(cls, v: object) -> bool:
        return _resolve_bool(v, "{{IS_RATE_LIMITED}}", True)

    @field_validator("sine_steps", mode="before")
    def _v_sine_steps(cls, v: object) -> int:
        return _resolve_positive_int(v, "{{SINE_STEPS}}", SINE_STEPS)

    @property
    def effective_next_rate(self) -> int:
        return self.next_event_rate if self.next_event_rate is not None else self.first_event_rate


class LoadSettings(BaseModel):
    cpu_delay_ms: int = Field(default=0)
    disk_busy_bytes: int = Field(default=0)
    cpu_mask_bits: int = Field(default=10)
    max_chunk_bytes: int = Field(default=DEFAULT_MAX_CHUNK_BYTES)
    data_dir: Path = Field(default=Path("./data"))

    @field_validator("cpu_delay_ms", mode="before")
    def _v_cpu_delay(cls, v: object) -> int:
        return _resolve_non_negative_int(v, "{{CPU_DELAY_MS}}", 0)

    @field_validator("disk_busy_bytes", mode="before")
    def _v_disk_bytes(cls, v: object) -> int:
        return _resolve_non_negative_int(v, "{{DISK_BUSY_BYTES}}", 0)

    @field_validator("cpu_mask_bits", mode="before")
    def _v_mask_bits(cls, v: object) -> int:
        value = _resolve_positive_int(v, "{{CPU_MASK_BITS}}", 10)
        if value > 64:
            raise ValueError("{{CPU_MASK_BITS}} must be at most 64")
        return value

    @field_validator("max_chunk_bytes", mode="before")
    def _v_max_chunk(cls, v: object) -> int:
        return _resolve_positive_int(v, "{{MAX_CHUNK_BYTES}}", DEFAULT_MAX_CHUNK_BYTES)

    @field_validator("data_dir", mode="before")
    def _v_data_dir(cls, v: object) -> Path:
        if v is None or _is_placeholder(v):
            return Path("./data")
        return v if isinstance(v, Path) else Path(str(v)).expanduser()


class VerificationSettings(BaseModel):
    allowed_lateness_sec: int = Field(default=ONE_DAY_SEC)

    @field_validator("allowed_lateness_sec", mode="before")
    def _v_lateness(cls, v: object) -> int:
        return _resolve_non_negative_int(v, "{{ALLOWED_LATENESS_SEC}}", ONE_DAY_SEC)


class AppConfig(BaseModel):
    generator: GeneratorSettings = Field(default_factory=GeneratorSettings)
    load: LoadSettings = Field(default_factory=LoadSettings)
    verification: VerificationSettings = Field(default_factory=VerificationSettings)

    @classmethod
    def from_env(cls) -> AppConfig:
        env = os.environ
        generator_kwargs = {
            "first_event_rate": env.get("FIRST_EVENT_RATE"),
            "next_event_rate": env.get("NEXT_EVENT_RATE"),
            "rate_unit": env.get("RATE_UNIT"),
            "rate_shape": env.get("RATE_SHAPE"),
            "rate_period_sec": env.get("RATE_PERIOD_SEC"),
            "num_event_generators": env.get("NUM_EVENT_GENERATORS"),
            "num_events": env.get("NUM_EVENTS"),
            "watermark_holdback_sec": env.get("WATERMARK_HOLDBACK_SEC"),
            "use_wallclock_event_time": env.get("USE_WALLCLOCK_EVENT_TIME"),
            "is_rate_limited": env.get("IS_RATE_LIMITED"),
            "sine_steps": env.get("SINE_STEPS"),
        }
        load_kwargs = {
            "cpu_delay_ms": env.get("CPU_DELAY_MS"),
            "disk_busy_bytes": env.get("DISK_BUSY_BYTES"),
            "cpu_mask_bits": env.get("CPU_MASK_BITS"),
            "max_chunk_bytes": env.get("MAX_CHUNK_BYTES"),
            "data_dir": env.get("DATA_DIR"),
        }
        verification_kwargs = {
            "allowed_lateness_sec": env.get("ALLOWED_LATENESS_SEC"),
        }
        payload: dict[str, object] = {}
        if any(value is not None for value in generator_kwargs.values()):
            payload["generator"] = {k: v for k, v in generator_kwargs.items() if v is not None}
        if any(value is not None for value in load_kwargs.values()):
            payload["load"] = {k: v for k, v in load_kwargs.items() if v is not None}
        if any(value is not None for value in verification_kwargs.values()):
            payload["verification"] = {
                k: v for k, v in verification_kwargs.items() if v is not None
            }
        return cls(**payload)
