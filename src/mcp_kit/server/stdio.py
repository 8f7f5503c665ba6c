"""
Stdio transport.

Messages are newline-delimited JSON on stdin/stdout. Each line is handled in
its own task so a slow tool does not block reading the next message.
"""

import asyncio
import logging
import sys
from typing import Optional, Set, Tuple

from .base import BaseMCPServer

logger = logging.getLogger(__name__)

# Tool results can be large; the default 64KiB readline limit is too small
STREAM_LIMIT = 16 * 1024 * 1024


async def _connect_stdio() -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    loop = asyncio.get_running_loop()

    reader = asyncio.StreamReader(limit=STREAM_LIMIT)
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, sys.stdin)

    transport, write_protocol = await loop.connect_write_pipe(
        asyncio.streams.FlowControlMixin, sys.stdout
    )
    writer = asyncio.StreamWriter(transport, write_protocol, None, loop)
    return reader, writer


class StdioTransport:
    """
    Serve a ``BaseMCPServer`` over a pair of asyncio streams.

    ``reader`` and ``writer`` default to the process stdin/stdout. Anything
    with ``readline()`` and ``write()`` / ``drain()`` works, which is how the
    tests drive it.
    """

    def __init__(
        self,
        server: BaseMCPServer,
        reader: Optional[asyncio.StreamReader] = None,
        writer: Optional[asyncio.StreamWriter] = None,
    ):
        self.server = server
        self.reader = reader
        self.writer = writer
        self._write_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    async def serve(self) -> None:
        """Read messages until EOF, then wait for in-flight work and shut down."""
        if self.reader is None or self.writer is None:
            self.reader, self.writer = await _connect_stdio()

        await self.server.startup()
        logger.info("Stdio transport ready", extra={"server": self.server.name})

        try:
            while True:
                line = await self.reader.readline()
                if not line:
                    break
                if not line.strip():
                    continue
                task = asyncio.ensure_future(self._handle_line(line))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
                # Let initialize finish before later lines are dispatched
                await asyncio.sleep(0)

            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)
            logger.info("Stdin closed, stopping", extra={"server": self.server.name})
        finally:
            await self.server.shutdown()

    async def _handle_line(self, line: bytes) -> None:
        try:
            response = await self.server.handle_message(line)
        except Exception as e:
            logger.error("Failed to handle message", extra={"error": str(e)}, exc_info=True)
            return
        if response is not None:
            await self.send(response)

    async def send(self, text: str) -> None:
        """Write one message followed by a newline."""
        async with self._write_lock:
            self.writer.write(text.encode("utf-8") + b"\n")
            await self.writer.drain()


def run_stdio(server: BaseMCPServer) -> None:
    """Run ``server`` on the process stdin/stdout until EOF."""
    asyncio.run(StdioTransport(server).serve())
