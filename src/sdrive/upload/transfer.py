"""Direct PUT of file bytes to the object store using a presigned URL.

The presigned signature covers an exact set of headers, so the request is
built by hand: the raw body, ``Content-Type`` from the ticket, and the
``Content-Length`` the transport needs to avoid chunked encoding.  It is
sent on a dedicated client with no default headers, no auth and no
redirect following, separate from the backend client.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from pathlib import Path

import httpx

from sdrive.constants import OBJECT_STORE_TIMEOUT_SECONDS, TRANSFER_CHUNK_SIZE
from sdrive.models import UploadTicket
from sdrive.upload.exceptions import TransferError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class ObjectTransferExecutor:
    """Performs one PUT per ticket and reports cumulative bytes sent.

    Progress is reported only as the transport pulls body chunks.  A
    transport that never pulls incrementally gets no intermediate reports,
    only the final ``(total, total)`` once the store answers 2xx.

    No retries: retry policy belongs to the caller.
    """

    def __init__(
        self,
        timeout: float = OBJECT_STORE_TIMEOUT_SECONDS,
        chunk_size: int = TRANSFER_CHUNK_SIZE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._chunk_size = chunk_size
        self._http = httpx.AsyncClient(
            timeout=timeout,
            transport=transport,
            follow_redirects=False,
        )

    async def close(self) -> None:
        await self._http.aclose()

    async def transfer(
        self,
        ticket: UploadTicket,
        source: bytes | Path,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        """PUT *source* to ``ticket.transfer_url``.

        Args:
            ticket: The upload ticket (used exactly once).
            source: Raw bytes or a local file path.
            on_progress: Called with ``(bytes_transferred, total_bytes)``,
                monotonically increasing.

        Raises:
            TransferError: ``FORBIDDEN`` on 403, ``NETWORK`` when no
                response arrived, ``OTHER`` on any other non-2xx.
        """
        total = _source_size(source)
        reported = 0

        def report(sent: int) -> None:
            nonlocal reported
            if on_progress is not None and sent > reported:
                reported = sent
                on_progress(sent, total)

        async def body() -> AsyncIterator[bytes]:
            sent = 0
            async for chunk in _iter_chunks(source, self._chunk_size):
                yield chunk
                # Resumed only once the transport has taken the chunk
                sent += len(chunk)
                report(sent)

        request = httpx.Request(
            "PUT",
            ticket.transfer_url,
            content=body(),
            headers={
                "Content-Type": ticket.effective_content_type,
                "Content-Length": str(total),
            },
        )

        target = _redact(ticket.transfer_url)
        logger.debug("PUT %s (%d bytes, %s)", target, total, ticket.effective_content_type)

        try:
            response = await self._http.send(request)
        except httpx.TransportError as exc:
            logger.error("Object store unreachable for %s: %s", target, exc)
            raise TransferError.network(exc.__class__.__name__) from exc

        if response.status_code == 403:
            logger.error(
                "Object store rejected %s with 403 (expired URL, bucket policy, "
                "permissions, or a header that invalidated the signature)",
                target,
            )
            raise TransferError.forbidden()
        if not response.is_success:
            detail = response.text.strip()[:200] or None
            logger.error("Object store returned %d for %s", response.status_code, target)
            raise TransferError.other(response.status_code, detail)

        report(total)
        logger.info("Uploaded %s to %s", ticket.file_name, target)


def _source_size(source: bytes | Path) -> int:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return len(source)
    return Path(source).stat().st_size


async def _iter_chunks(source: bytes | Path, chunk_size: int) -> AsyncIterator[bytes]:
    if isinstance(source, (bytes, bytearray, memoryview)):
        view = memoryview(source)
        for start in range(0, len(view), chunk_size):
            yield bytes(view[start : start + chunk_size])
        return

    fh = await asyncio.to_thread(open, source, "rb")
    try:
        while True:
            chunk = await asyncio.to_thread(fh.read, chunk_size)
            if not chunk:
                break
            yield chunk
    finally:
        await asyncio.to_thread(fh.close)


def _redact(url: str) -> str:
    """Drop the query string (it carries the signature) for logging."""
    return url.split("?", 1)[0]
