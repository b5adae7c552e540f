import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

SRC_ROOT = Path(__file__).resolve().parent.parent / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))


@pytest.fixture(autouse=True)
def configure_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    data_dir = tmp_path / "data"
    monkeypatch.setenv("DATA_DIR", str(data_dir))
    monkeypatch.setenv("FIRST_EVENT_RATE", "100")
    monkeypatch.setenv("NEXT_EVENT_RATE", "100")
    monkeypatch.setenv("RATE_UNIT", "PER_SECOND")
    monkeypatch.setenv("RATE_SHAPE", "SQUARE")
    monkeypatch.setenv("RATE_PERIOD_SEC", "10")
    monkeypatch.setenv("NUM_EVENT_GENERATORS", "1")
    monkeypatch.setenv("NUM_EVENTS", "100")
    monkeypatch.setenv("WATERMARK_HOLDBACK_SEC", "0")
    monkeypatch.setenv("USE_WALLCLOCK_EVENT_TIME", "false")
    monkeypatch.setenv("IS_RATE_LIMITED", "true")
    monkeypatch.setenv("CPU_DELAY_MS", "0")
    monkeypatch.setenv("DISK_BUSY_BYTES", "0")
    monkeypatch.setenv("CPU_MASK_BITS", "10")
    yield
