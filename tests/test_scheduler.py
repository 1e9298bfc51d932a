import asyncio
from datetime import datetime

import pytest

import scheduler
from scheduler import run_daily, seconds_until_midnight


@pytest.mark.parametrize(
    "now,expected",
    (
        (datetime(2024, 6, 10, 23, 0), 3600),
        (datetime(2024, 6, 10, 0, 0), 86400),
        (datetime(2024, 12, 31, 23, 59, 30), 30),
    ),
)
def test_seconds_until_midnight(now: datetime, expected: float) -> None:
    assert seconds_until_midnight(now) == expected


class Job:
    def __init__(self) -> None:
        self.calls = 0

    async def extend(self):
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("store down")
        raise asyncio.CancelledError


@pytest.mark.asyncio
async def test_run_daily_survives_a_failed_run(monkeypatch: pytest.MonkeyPatch) -> None:
    slept: list[float] = []

    async def sleep(delay: float) -> None:
        slept.append(delay)

    monkeypatch.setattr(scheduler.asyncio, "sleep", sleep)
    job = Job()

    with pytest.raises(asyncio.CancelledError):
        await run_daily(job, now=lambda: datetime(2024, 6, 10, 23, 0))  # type: ignore[arg-type]

    assert job.calls == 2
    assert slept == [3600, 3600]
