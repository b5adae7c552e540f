# ruff: noqa: B008
"""Command-line helpers for the Nexmark workload generator."""

from __future__ import annotations

import json
import logging
import sys
import threading
import time
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import typer

SRC_ROOT = Path(__file__).resolve().parent.parent / "src"

try:
    from nexmark_core import config as config_module
    from nexmark_core.errors import NexmarkError
    from nexmark_core.load import CpuCalibration, FileSink, cpu_delay, disk_busy
    from nexmark_core.rates import delay_schedule
    from nexmark_core.timeline import EventTimeline, GeneratorConfig, TimedEvent
    from nexmark_core.verification import Signature, fold, sign
except ModuleNotFoundError:  # pragma: no cover - fallback when running from a checkout
    if str(SRC_ROOT) not in sys.path:
        sys.path.insert(0, str(SRC_ROOT))
    from nexmark_core import config as config_module
    from nexmark_core.errors import NexmarkError
    from nexmark_core.load import CpuCalibration, FileSink, cpu_delay, disk_busy
    from nexmark_core.rates import delay_schedule
    from nexmark_core.timeline import EventTimeline, GeneratorConfig, TimedEvent
    from nexmark_core.verification import Signature, fold, sign

__version__ = "0.1.0"

logger = logging.getLogger("nexgen")


def version_callback(value: bool) -> None:
    if value:
        typer.echo(f"nexgen version {__version__}")
        raise typer.Exit()


app = typer.Typer(help="Generate rate-shaped event streams and verify their results.")


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    log_level: str = typer.Option("WARNING", "--log-level", help="Python logging level."),
) -> None:
    """Nexmark workload generator CLI."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _config() -> config_module.AppConfig:
    return config_module.AppConfig.from_env()


def _canonical(event: Any) -> str:
    return json.dumps(event, sort_keys=True, separators=(",", ":"))


def _load_records(path: Path) -> list[Any]:
    with path.open("r", encoding="utf-8") as fp:
        return [json.loads(line) for line in fp if line.strip()]


def _load_timed(path: Path) -> Iterable[TimedEvent[str]]:
    with path.open("r", encoding="utf-8") as fp:
        for line in fp:
            if not line.strip():
                continue
            payload = json.loads(line)
            yield TimedEvent(
                value=_canonical(payload["event"]), timestamp_ms=payload["timestamp_ms"]
            )


def _timed_line(event: TimedEvent[str]) -> str:
    payload = {"timestamp_ms": event.timestamp_ms, "event": json.loads(event.value)}
    return json.dumps(payload) + "\n"


def _signature_of(path: Path) -> Signature:
    return fold(_load_timed(path))


def _generator_config(
    rate: int | None,
    next_rate: int | None,
    unit: str | None,
    shape: str | None,
    generators: int | None,
) -> GeneratorConfig:
    settings = _config().generator
    overrides: dict[str, object] = {}
    if rate is not None:
        overrides["first_event_rate"] = rate
    if next_rate is not None:
        overrides["next_event_rate"] = next_rate
    if unit is not None:
        overrides["rate_unit"] = unit
    if shape is not None:
        overrides["rate_shape"] = shape
    if generators is not None:
        overrides["num_event_generators"] = generators
    if overrides:
        merged = settings.model_dump(exclude_none=True)
        merged.update(overrides)
        settings = config_module.GeneratorSettings(**merged)
    return GeneratorConfig.from_settings(settings)


@app.command()
def schedule(
    rate: int | None = typer.Option(None, "--rate", help="First target rate (events per unit)"),
    next_rate: int | None = typer.Option(None, "--next-rate", help="Second target rate"),
    unit: str | None = typer.Option(None, "--unit", help="per_second | per_minute"),
    shape: str | None = typer.Option(None, "--shape", help="square | sine"),
    generators: int | None = typer.Option(None, "--generators", "-g", min=1),
) -> None:
    """Print the per-generator delay schedule as JSON."""

    try:
        cfg = _generator_config(rate, next_rate, unit, shape, generators)
    except (NexmarkError, ValueError) as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc
    result = delay_schedule(
        cfg.first_rate,
        cfg.next_rate,
        cfg.rate_unit,
        cfg.generator_count,
        cfg.rate_shape,
        rate_period_sec=cfg.rate_period_sec,
        sine_steps=cfg.sine_steps,
    )
    typer.echo(
        json.dumps(
            {
                "first_rate": cfg.first_rate,
                "next_rate": cfg.next_rate,
                "unit": cfg.rate_unit.name,
                "shape": cfg.rate_shape.name,
                "generators": cfg.generator_count,
                "delays_us": list(result.delays_us),
                "step_length_sec": result.step_length_sec,
            },
            indent=2,
        )
    )


@app.command()
def generate(
    from_path: Path = typer.Option(..., "--from", "-f", help="JSONL file of domain records"),
    out: Path = typer.Option(..., "--out", "-o", help="Destination timestamped JSONL"),
    count: int | None = typer.Option(None, "--count", "-n", min=1, help="Events to emit"),
    rate: int | None = typer.Option(None, "--rate", help="First target rate"),
    next_rate: int | None = typer.Option(None, "--next-rate", help="Second target rate"),
    unit: str | None = typer.Option(None, "--unit", help="per_second | per_minute"),
    shape: str | None = typer.Option(None, "--shape", help="square | sine"),
    generators: int | None = typer.Option(None, "--generators", "-g", min=1),
    stream: bool = typer.Option(False, "--stream", help="Pace emission in real time"),
) -> None:
    """Timestamp domain records and write them with their signature."""

    if not from_path.exists():
        typer.echo(f"Dataset not found: {from_path}", err=True)
        raise typer.Exit(code=1)
    records = [_canonical(record) for record in _load_records(from_path)]
    total = count if count is not None else len(records)
    try:
        cfg = _generator_config(rate, next_rate, unit, shape, generators)
        timeline: EventTimeline[str] = EventTimeline(cfg)
        n = cfg.generator_count

        def source(index: int) -> list[str]:
            return records[index::n]

        out.parent.mkdir(parents=True, exist_ok=True)
        if stream:
            lock = threading.Lock()
            signature = Signature()
            with out.open("w", encoding="utf-8") as fp:

                def emit(event: TimedEvent[str]) -> None:
                    with lock:
                        fp.write(_timed_line(event))
                        signature.add(event.timestamp_ms, event.value)

                emitted = timeline.stream(source, emit, count=total)
        else:
            events = timeline.materialize(source, total)
            events.sort(key=lambda e: e.timestamp_ms)
            with out.open("w", encoding="utf-8") as fp:
                for event in events:
                    fp.write(_timed_line(event))
            signature = fold(events)
            emitted = len(events)
    except (NexmarkError, ValueError) as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc

    logger.info("Generated %d events from %s (stream=%s)", emitted, from_path, stream)
    typer.echo(f"Wrote {emitted} events to {out}", err=True)
    typer.echo(signature.hex())


@app.command(name="signature")
def signature_cmd(
    path: Path = typer.Argument(..., help="Timestamped JSONL file"),
    expect: int | None = typer.Option(
        None, "--expect", "-e", min=1, help="Fire the window after this many events"
    ),
) -> None:
    """Print the order-invariant signature of a timestamped JSONL file."""

    if not path.exists():
        typer.echo(f"File not found: {path}", err=True)
        raise typer.Exit(code=1)
    events = list(_load_timed(path))
    try:
        lateness = _config().verification.allowed_lateness_sec
        result = sign(events, expect if expect is not None else len(events), lateness)
    except (NexmarkError, ValueError) as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(f"{result.hex()} ({result.count} events)", err=True)
    typer.echo(result.hex())


@app.command()
def compare(
    left: Path = typer.Argument(..., help="First timestamped JSONL file"),
    right: Path = typer.Argument(..., help="Second timestamped JSONL file"),
) -> None:
    """Exit 0 when both files carry the same multiset of timestamped events."""

    left_sig = _signature_of(left)
    right_sig = _signature_of(right)
    if left_sig.value != right_sig.value:
        typer.echo(f"MISMATCH {left_sig.hex()} != {right_sig.hex()}")
        raise typer.Exit(code=1)
    typer.echo(f"MATCH {left_sig.hex()}")


@app.command()
def burn(
    cpu_ms: int | None = typer.Option(None, "--cpu-ms", min=0, help="CPU budget per element"),
    disk_bytes: int | None = typer.Option(
        None, "--disk-bytes", min=0, help="Bytes written per element"
    ),
    elements: int = typer.Option(1, "--elements", min=1, help="Elements to push through"),
) -> None:
    """Run the CPU and disk injectors and report elapsed time."""

    load = _config().load
    delay_ms = load.cpu_delay_ms if cpu_ms is None else cpu_ms
    nbytes = load.disk_busy_bytes if disk_bytes is None else disk_bytes
    calibration = CpuCalibration(mask_bits=load.cpu_mask_bits)
    sink = FileSink(load.data_dir / "disk_busy.bin")
    start = time.perf_counter()
    for element in range(elements):
        cpu_delay(element, delay_ms, calibration)
        if nbytes:
            disk_busy(element, nbytes, sink, load.max_chunk_bytes)
    elapsed = time.perf_counter() - start
    typer.echo(
        json.dumps(
            {
                "elements": elements,
                "cpu_delay_ms": delay_ms,
                "disk_busy_bytes": nbytes,
                "elapsed_sec": round(elapsed, 6),
            }
        )
    )


if __name__ == "__main__":
    app()
