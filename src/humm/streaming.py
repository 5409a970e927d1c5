# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Streaming capture: a bounded-rate frame loop feeding one sink.

The loop ticks on a fixed period (``1 / frame_rate`` seconds) measured
against the event-loop clock. Each tick launches the capture as its own
task, so a slow capture never delays the timer; while a capture is still
in flight further ticks are counted as dropped. Capture and sink errors are
logged and counted, never fatal to the loop.

``stop()`` cancels the loop and the in-flight capture and awaits both:
after it returns no frame reaches the sink.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

from . import STREAM_IDLE, StreamStatus
from .commands import DEFAULT_FRAME_RATE, DEFAULT_STREAM_QUALITY, FrameSink

logger = logging.getLogger(__name__)

CaptureFn = Callable[[], Awaitable[str]]


class FrameStreamer:
    """Owns at most one active capture loop."""

    def __init__(self) -> None:
        self._loop_task: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None
        self._sink: FrameSink | None = None
        self._frame_rate: float = 0.0
        self._quality: int = 0
        self.frames_delivered = 0
        self.frames_dropped = 0
        self.frames_failed = 0

    @property
    def is_streaming(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def status(self) -> StreamStatus:
        if not self.is_streaming:
            return STREAM_IDLE
        return StreamStatus(is_streaming=True, frame_rate=self._frame_rate, quality=self._quality)

    async def start(
        self,
        capture: CaptureFn,
        sink: FrameSink | None,
        *,
        frame_rate: float = DEFAULT_FRAME_RATE,
        quality: int = DEFAULT_STREAM_QUALITY,
    ) -> StreamStatus:
        """Start capturing; an already-active stream is stopped first."""
        if frame_rate <= 0:
            raise ValueError(f"frame_rate must be positive, got {frame_rate}")
        if self.is_streaming:
            logger.info("Replacing active stream (%.1f fps)", self._frame_rate)
            await self.stop()

        self._sink = sink
        self._frame_rate = float(frame_rate)
        self._quality = quality
        self.frames_delivered = self.frames_dropped = self.frames_failed = 0
        self._loop_task = asyncio.create_task(self._run(capture, 1.0 / frame_rate), name="humm-frame-stream")
        logger.info("Stream started: %.1f fps, quality=%d", frame_rate, quality)
        return self.status()

    async def stop(self) -> StreamStatus:
        """Stop the loop and wait until no frame can be delivered. Idempotent."""
        self._sink = None
        # A sink may stop the stream from inside its own capture task
        current = asyncio.current_task()
        tasks = [t for t in (self._loop_task, self._inflight) if t is not None and t is not current]
        self._loop_task = None
        self._inflight = None
        for task in tasks:
            task.cancel()
        if tasks:
            # return_exceptions keeps child CancelledErrors from escaping while
            # still propagating cancellation of the caller itself
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(
                "Stream stopped: delivered=%d dropped=%d failed=%d",
                self.frames_delivered,
                self.frames_dropped,
                self.frames_failed,
            )
        self._frame_rate = 0.0
        self._quality = 0
        return STREAM_IDLE

    async def _run(self, capture: CaptureFn, period: float) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            if self._inflight is None or self._inflight.done():
                self._inflight = asyncio.create_task(self._capture_once(capture))
            else:
                self.frames_dropped += 1
            next_tick += period
            delay = next_tick - loop.time()
            if delay < 0:
                # Fell behind (suspended loop); resync instead of bursting
                next_tick = loop.time()
                delay = 0
            await asyncio.sleep(delay)

    async def _capture_once(self, capture: CaptureFn) -> None:
        try:
            frame = await capture()
        except asyncio.CancelledError:
            raise
        except Exception:
            self.frames_failed += 1
            logger.warning("Stream frame capture failed", exc_info=True)
            return

        sink = self._sink
        if sink is None:
            return
        try:
            result = sink(frame)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception:
            self.frames_failed += 1
            logger.warning("Stream sink raised", exc_info=True)
        else:
            self.frames_delivered += 1
