"""
Audio I/O Module

PCM16 mono microphone source and speaker sink for the external agent link,
backed by sounddevice raw streams. sounddevice is imported when a stream is
opened so the rest of the package loads on machines without PortAudio.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Optional

from mentorai.config import settings
from mentorai.logger import get_logger

logger = get_logger(__name__)

BYTES_PER_SAMPLE = 2


def pcm_duration_s(pcm: bytes, sample_rate: int) -> float:
    """Playback length of a PCM16 mono buffer."""
    if sample_rate <= 0:
        return 0.0
    return len(pcm) / (BYTES_PER_SAMPLE * sample_rate)


class AudioSource(ABC):
    """Produces PCM16 mono chunks."""

    @abstractmethod
    async def start(self) -> None: ...

    @abstractmethod
    async def read(self) -> bytes:
        """Return the next chunk. Empty bytes means the source is exhausted."""

    @abstractmethod
    async def stop(self) -> None: ...


class AudioSink(ABC):
    """Consumes PCM16 mono chunks."""

    @abstractmethod
    async def start(self) -> None: ...

    @abstractmethod
    async def play(self, pcm: bytes) -> None:
        """Queue a chunk for playback without waiting for it to finish."""

    @abstractmethod
    def flush(self) -> None:
        """Drop everything queued but not yet played."""

    @abstractmethod
    async def stop(self) -> None: ...


class MicrophoneSource(AudioSource):
    """Default input device via sounddevice.RawInputStream."""

    def __init__(self, sample_rate: Optional[int] = None, block_ms: int = 100, device: Any = None):
        self.sample_rate = sample_rate or settings.agent.sample_rate
        self.blocksize = int(self.sample_rate * block_ms / 1000)
        self._device = device
        self._stream = None

    async def start(self) -> None:
        if self._stream is not None:
            return
        import sounddevice as sd

        try:
            stream = sd.RawInputStream(
                samplerate=self.sample_rate,
                blocksize=self.blocksize,
                channels=1,
                dtype="int16",
                device=self._device,
            )
            stream.start()
        except sd.PortAudioError as e:
            raise PermissionError(f"cannot open microphone: {e}") from e
        self._stream = stream
        logger.debug(f"Microphone opened at {self.sample_rate}Hz")

    async def read(self) -> bytes:
        stream = self._stream
        if stream is None:
            return b""
        loop = asyncio.get_running_loop()
        data, overflowed = await loop.run_in_executor(None, stream.read, self.blocksize)
        if overflowed:
            logger.debug("Microphone input overflow")
        return bytes(data)

    async def stop(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.stop()
        finally:
            stream.close()
        logger.debug("Microphone released")


class SpeakerSink(AudioSink):
    """Default output device via sounddevice.RawOutputStream with a playback queue."""

    def __init__(self, sample_rate: Optional[int] = None, device: Any = None):
        self.sample_rate = sample_rate or settings.agent.sample_rate
        self._device = device
        self._stream = None
        self._queue: "asyncio.Queue[bytes]" = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        if self._stream is not None:
            return
        import sounddevice as sd

        stream = sd.RawOutputStream(
            samplerate=self.sample_rate,
            channels=1,
            dtype="int16",
            device=self._device,
        )
        stream.start()
        self._stream = stream
        self._task = asyncio.create_task(self._playback())
        logger.debug(f"Speaker opened at {self.sample_rate}Hz")

    async def play(self, pcm: bytes) -> None:
        if pcm:
            await self._queue.put(pcm)

    def flush(self) -> None:
        dropped = 0
        while not self._queue.empty():
            try:
                self._queue.get_nowait()
                dropped += 1
            except asyncio.QueueEmpty:
                break
        if dropped:
            logger.debug(f"Flushed {dropped} queued audio chunks")

    async def _playback(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            pcm = await self._queue.get()
            stream = self._stream
            if stream is None:
                return
            await loop.run_in_executor(None, stream.write, pcm)

    async def stop(self) -> None:
        self.flush()
        task = self._task
        self._task = None
        if task and not task.done():
            task.cancel()
            await asyncio.wait({task})

        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.abort()
        finally:
            stream.close()
        logger.debug("Speaker released")
