"""Workload generator and result-verification kernel for the Nexmark benchmark."""

from .config import AppConfig, GeneratorSettings, LoadSettings, VerificationSettings
from .errors import ConfigurationError, ExhaustedSource, InvalidArgument, NexmarkError
from .rates import DelaySchedule, RateShape, RateUnit, delay_for_constant_rate, delay_schedule
from .timeline import EventTimeline, GeneratorConfig, TimedEvent
from .verification import Signature, WindowPolicy, sign

__all__ = [
    "AppConfig",
    "ConfigurationError",
    "DelaySchedule",
    "EventTimeline",
    "ExhaustedSource",
    "GeneratorConfig",
    "GeneratorSettings",
    "InvalidArgument",
    "LoadSettings",
    "NexmarkError",
    "RateShape",
    "RateUnit",
    "Signature",
    "TimedEvent",
    "VerificationSettings",
    "WindowPolicy",
    "delay_for_constant_rate",
    "delay_schedule",
    "sign",
]
