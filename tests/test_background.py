"""Tests for fusion/background.py."""

import logging

from fusion.background import BackgroundQueue


async def test_jobs_run_in_order():
    queue = BackgroundQueue()
    done: list[str] = []

    async def job(name: str) -> None:
        done.append(name)

    queue.start()
    queue.submit("a", lambda: job("a"))
    queue.submit("b", lambda: job("b"))
    await queue.join()
    await queue.stop()

    assert done == ["a", "b"]
    assert not queue.running


async def test_failing_job_is_logged_and_isolated(caplog):
    queue = BackgroundQueue()
    done: list[str] = []

    async def broken() -> None:
        raise RuntimeError("extract failed")

    async def fine() -> None:
        done.append("fine")

    queue.start()
    with caplog.at_level(logging.ERROR, logger="fusion.background"):
        queue.submit("broken", broken)
        queue.submit("fine", fine)
        await queue.join()
    await queue.stop()

    assert done == ["fine"]
    assert "Background job broken failed: extract failed" in caplog.text


async def test_full_queue_rejects_job():
    queue = BackgroundQueue(maxsize=1)

    async def noop() -> None:
        return None

    assert queue.submit("first", noop) is True
    assert queue.submit("second", noop) is False


async def test_stop_drains_pending_jobs():
    queue = BackgroundQueue()
    done: list[int] = []

    async def job() -> None:
        done.append(1)

    queue.submit("pending", job)
    queue.start()
    await queue.stop()

    assert done == [1]
