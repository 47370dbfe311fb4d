"""
Speech Input Channel

Base class for one-shot speech capture. Each call to start_listening() opens
the microphone for a single capture and ends with exactly one of:

- TranscriptEvent (final text)
- CaptureErrorEvent (permission denied or recognition failure)
- CaptureTimeoutEvent (nothing heard within the capture window)

The microphone is released before the outcome event is published. The
safety timeout also runs while the engine is still starting.
Engine callbacks may arrive on foreign threads; they are marshalled onto the
event loop before any state is touched.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

from mentorai.config import settings
from mentorai.logger import get_logger
from mentorai.realtime.events import (
    CaptureErrorEvent,
    CaptureTimeoutEvent,
    Event,
    EventBus,
    TranscriptEvent,
)
from mentorai.realtime.session import FailureKind, new_id

logger = get_logger(__name__)

# Engine errors that mean the microphone could not be opened
_PERMISSION_MARKERS = ("SPXERR_MIC", "permission", "access denied")


def classify_cancellation(detail: str) -> FailureKind:
    """Map an engine error or cancellation detail to a failure kind."""
    lowered = detail.lower()
    if any(marker.lower() in lowered for marker in _PERMISSION_MARKERS):
        return FailureKind.PERMISSION_DENIED
    return FailureKind.RECOGNITION_FAILURE


class SpeechInputChannel(ABC):
    """
    One-shot speech capture with a safety timeout.

    Subclasses implement _open() (acquire the microphone and start the engine)
    and _close() (stop the engine and release the microphone), and report
    results with _deliver_transcript() / _deliver_error().

    Usage:
        channel = AzureSpeechInput(event_bus)
        await channel.start_listening()
        # One capture event follows on event_bus
        await channel.stop()
    """

    def __init__(self, event_bus: EventBus, timeout_s: Optional[float] = None):
        self._event_bus = event_bus
        self._timeout_s = timeout_s if timeout_s is not None else settings.capture.timeout_s
        self._capture_id: Optional[str] = None
        self._timeout_task: Optional[asyncio.Task] = None
        self._abandoned_open: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_active(self) -> bool:
        """True while a capture is open."""
        return self._capture_id is not None

    @property
    def capture_id(self) -> Optional[str]:
        return self._capture_id

    @abstractmethod
    async def _open(self) -> None:
        """Acquire the microphone and start recognition. PermissionError means declined."""

    @abstractmethod
    async def _close(self) -> None:
        """Stop recognition and release the microphone."""

    async def start_listening(self, capture_id: Optional[str] = None) -> bool:
        """
        Start one capture.

        Args:
            capture_id: Correlation id stamped on the outcome event

        Returns:
            False if a capture is already active (nothing changes)
        """
        if self.is_active:
            logger.warning("start_listening() ignored: capture already active")
            return False

        self._loop = asyncio.get_running_loop()
        capture_id = capture_id or new_id()
        self._capture_id = capture_id
        logger.debug(f"Capture {capture_id} opening")

        # Armed before the engine starts so a stalled open still times out
        expiry = asyncio.create_task(self._expire(capture_id))
        self._timeout_task = expiry
        opening = asyncio.create_task(self._open())
        await asyncio.wait({opening, expiry}, return_when=asyncio.FIRST_COMPLETED)

        if not opening.done():
            # Timed out or stopped while the engine was starting
            self._abandoned_open = asyncio.create_task(self._discard_open(opening))
            return True

        try:
            opening.result()
        except Exception as e:
            if isinstance(e, PermissionError):
                kind = FailureKind.PERMISSION_DENIED
            else:
                kind = classify_cancellation(str(e))
            if kind == FailureKind.PERMISSION_DENIED:
                logger.error(f"Microphone permission denied: {e}")
            else:
                logger.error(f"Speech recognition failed to start: {e}")
            await self._finish(CaptureErrorEvent(
                kind=kind,
                detail=str(e) or type(e).__name__,
                capture_id=capture_id,
            ))
            return True

        if self._capture_id != capture_id:
            await self._release()
        return True

    async def stop(self) -> None:
        """Abort the active capture without publishing an outcome. Idempotent."""
        if self._capture_id is None:
            return
        logger.debug(f"Capture {self._capture_id} stopped")
        self._capture_id = None
        self._cancel_timeout()
        await self._release()

    # ========================================================================
    # Outcome delivery
    # ========================================================================

    def _deliver_transcript(self, text: str) -> None:
        """Report a final transcript. Safe to call from any thread."""
        self._marshal(TranscriptEvent(text=text, capture_id=self._capture_id or ""))

    def _deliver_error(self, kind: FailureKind, detail: str) -> None:
        """Report a capture failure. Safe to call from any thread."""
        self._marshal(CaptureErrorEvent(
            kind=kind, detail=detail, capture_id=self._capture_id or "",
        ))

    def _marshal(self, event: Event) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        asyncio.run_coroutine_threadsafe(self._finish(event), loop)

    async def _finish(self, event: Event) -> None:
        """Close the capture and publish its single outcome."""
        capture_id = getattr(event, "capture_id", "")
        if self._capture_id is None or capture_id != self._capture_id:
            logger.debug(f"Dropping late capture event {type(event).__name__}")
            return

        self._capture_id = None
        self._cancel_timeout()
        await self._release()
        await self._event_bus.publish(event)

    async def _expire(self, capture_id: str) -> None:
        await asyncio.sleep(self._timeout_s)
        logger.info(f"Capture {capture_id} timed out after {self._timeout_s:.0f}s")
        await self._finish(CaptureTimeoutEvent(capture_id=capture_id))

    def _cancel_timeout(self) -> None:
        task = self._timeout_task
        self._timeout_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _release(self) -> None:
        try:
            await self._close()
        except Exception as e:
            logger.debug(f"Error releasing microphone: {e}")

    async def _discard_open(self, opening: asyncio.Task) -> None:
        """Release an engine start that finished after its capture was over."""
        try:
            await opening
        except Exception as e:
            logger.debug(f"Abandoned engine start failed: {e}")
            return
        if self._capture_id is None:
            await self._release()
