"""
Scanning capability: a frame source plus a bounded decode loop.

The camera is abstracted behind FrameSource so the spending flow can be
driven by a synthetic source in tests. A ScanSession owns the started
source; closing the session always stops it.
"""

import logging
from typing import Any, AsyncIterator, Callable, Optional, Protocol, Union, runtime_checkable

from relief_spend_mcp.core.codec import decode
from relief_spend_mcp.core.exceptions import CameraUnavailable, DecodeError
from relief_spend_mcp.models.payment_code import PaymentCode

logger = logging.getLogger(__name__)

# External optical decoder: image frame in, decoded text (or None) out
FrameDecoder = Callable[[Any], Optional[str]]

ScanResult = Union[PaymentCode, DecodeError]


@runtime_checkable
class FrameSource(Protocol):
    """A camera, or anything else that delivers image frames."""

    async def start(self) -> None:
        """Acquire the device and begin delivering frames."""
        ...

    def stop(self) -> None:
        """Release the device. Must be safe to call more than once."""
        ...

    def frames(self) -> AsyncIterator[Any]:
        """Frames in delivery order; ends when the source stops."""
        ...


class ScanSession:
    """
    A started frame source and the decoder applied to its frames.

    Usable as an async context manager::

        async with ScanSession(camera, decoder) as session:
            async for result in session.attempts():
                ...
    """

    def __init__(self, source: FrameSource, decoder: FrameDecoder):
        self._source = source
        self._decoder = decoder
        self.active = False

    async def open(self) -> None:
        """
        Start the frame source.

        Raises:
            CameraUnavailable: If the source fails to start
        """
        if self.active:
            return
        try:
            await self._source.start()
        except Exception as e:
            raise CameraUnavailable(
                "No camera found. Please ensure your device has a camera "
                "and permissions are granted."
            ) from e
        self.active = True
        logger.debug("Frame source started")

    def close(self) -> None:
        """Stop the frame source if it is running."""
        if not self.active:
            return
        self.active = False
        self._source.stop()
        logger.debug("Frame source stopped")

    async def __aenter__(self) -> "ScanSession":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    async def attempts(self) -> AsyncIterator[ScanResult]:
        """
        Decode attempts, one per frame that yielded text.

        Empty frames are skipped and a frame the decoder chokes on is
        logged and skipped; neither ends the loop. The loop ends when the
        source runs dry or the session is closed.
        """
        async for frame in self._source.frames():
            if not self.active:
                break
            try:
                text = self._decoder(frame)
            except Exception:
                logger.debug("Frame decoder failed, waiting for next frame", exc_info=True)
                continue
            if not text:
                continue
            result: ScanResult
            try:
                result = decode(text)
            except DecodeError as e:
                result = e
            yield result
