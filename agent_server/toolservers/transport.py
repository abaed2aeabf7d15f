"""Line transports for the tool-server protocol.

- ``serve`` / ``serve_stdio`` / ``run``: host a ToolServer on any line stream
  (stdin/stdout for subprocesses).
- ``ToolServerProcess``: spawn a tool-server subprocess from a
  ToolServerSpec and talk to it; owned by one turn, torn down on exit.
- ``InProcessChannel``: the same client API against a ToolServer object,
  no process involved.
- ``read_lines``: newline framing that drops over-long lines instead of failing.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import sys
from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable
from typing import TYPE_CHECKING

from agent_server.toolservers.protocol import JsonRpcClient, ToolServerClient

if TYPE_CHECKING:
    from agent_server.toolservers.protocol import ToolServer
    from agent_server.toolservers.registry import ToolServerSpec

logger = logging.getLogger(__name__)

_LINE_LIMIT = 16 * 1024 * 1024  # bytes per protocol line


# ---------------------------------------------------------------------------
# Line reading
# ---------------------------------------------------------------------------


async def read_lines(reader: asyncio.StreamReader) -> AsyncIterator[bytes]:
    """Yield newline-terminated lines until EOF.

    A line longer than the reader's limit is discarded up to its newline
    and reading carries on with the next one.
    """
    while True:
        try:
            yield await reader.readuntil(b"\n")
        except asyncio.IncompleteReadError as e:
            if e.partial:
                yield e.partial
            return
        except asyncio.LimitOverrunError as e:
            logger.warning("Dropping protocol line over the length limit")
            try:
                await _skip_line(reader, e.consumed)
            except asyncio.IncompleteReadError:
                return


async def _skip_line(reader: asyncio.StreamReader, consumed: int) -> None:
    while True:
        await reader.readexactly(consumed)
        try:
            await reader.readuntil(b"\n")
            return
        except asyncio.LimitOverrunError as e:
            consumed = e.consumed


# ---------------------------------------------------------------------------
# Server side
# ---------------------------------------------------------------------------


async def serve(
    server: ToolServer,
    lines: AsyncIterable[str | bytes],
    send: Callable[[str], Awaitable[None]],
) -> None:
    """Serve ``server`` until ``lines`` is exhausted.

    Every request runs as its own task, so a slow ``tools/call`` never blocks
    the next line. Outstanding requests finish before this returns.
    """
    tasks: set[asyncio.Task] = set()

    async def respond(line: str) -> None:
        try:
            reply = await server.handle_line(line)
            if reply is not None:
                await send(reply)
        except Exception as e:
            logger.error(f"[{server.name}] failed to answer request: {e}", exc_info=True)

    async for raw in lines:
        line = raw.decode("utf-8", errors="replace") if isinstance(raw, bytes) else raw
        task = asyncio.create_task(respond(line))
        tasks.add(task)
        task.add_done_callback(tasks.discard)

    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)


async def serve_stdio(server: ToolServer) -> None:
    """Serve on this process's stdin/stdout, one JSON object per line."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=_LINE_LIMIT)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)

    async def send(line: str) -> None:
        sys.stdout.write(line + "\n")
        sys.stdout.flush()

    logger.info(f"Tool server '{server.name}' listening on stdio ({len(server.catalog)} tools)")
    await serve(server, read_lines(reader), send)
    logger.info(f"Tool server '{server.name}' stdin closed, exiting")


def run(server: ToolServer) -> None:
    """Entry point for ``python -m agent_server.toolservers.<name>``.

    stdout carries the protocol, so logging goes to stderr.
    """
    logging.basicConfig(
        level=logging.INFO,
        stream=sys.stderr,
        format=f"%(asctime)s [{server.name}] %(levelname)s %(name)s: %(message)s",
    )
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(serve_stdio(server))


# ---------------------------------------------------------------------------
# Client side
# ---------------------------------------------------------------------------


class ToolServerProcess:
    """Async context manager: spawn, initialize, and later tear down one tool server.

    ::

        async with ToolServerProcess(spec) as client:
            tools = await client.list_tools()
    """

    def __init__(
        self,
        spec: ToolServerSpec,
        *,
        startup_timeout: float = 30.0,
        shutdown_timeout: float = 5.0,
    ):
        self.spec = spec
        self.startup_timeout = startup_timeout
        self.shutdown_timeout = shutdown_timeout
        self._proc: asyncio.subprocess.Process | None = None
        self._rpc: JsonRpcClient | None = None
        self._pump_task: asyncio.Task | None = None

    async def __aenter__(self) -> ToolServerClient:
        self._proc = await asyncio.create_subprocess_exec(
            self.spec.command,
            *self.spec.args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            env={**os.environ, **self.spec.env},
            limit=_LINE_LIMIT,
        )
        logger.info(f"Spawned tool server '{self.spec.name}' (pid={self._proc.pid})")

        self._rpc = JsonRpcClient(self._write, name=self.spec.name)
        self._pump_task = asyncio.create_task(self._pump())
        client = ToolServerClient(self._rpc, self.spec.name)
        try:
            await asyncio.wait_for(client.initialize(), self.startup_timeout)
        except BaseException:
            await self._shutdown()
            raise
        return client

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self._shutdown()

    async def send_raw(self, line: str) -> None:
        """Write one raw line to the server, bypassing the correlator."""
        await self._write(line)

    async def _write(self, line: str) -> None:
        assert self._proc is not None and self._proc.stdin is not None
        self._proc.stdin.write(line.encode("utf-8") + b"\n")
        await self._proc.stdin.drain()

    async def _pump(self) -> None:
        assert self._proc is not None and self._proc.stdout is not None
        assert self._rpc is not None
        try:
            async for raw in read_lines(self._proc.stdout):
                self._rpc.feed(raw.decode("utf-8", errors="replace"))
        finally:
            self._rpc.close()

    async def _shutdown(self) -> None:
        proc = self._proc
        if proc is None:
            return
        self._proc = None

        if self._pump_task is not None:
            self._pump_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._pump_task

        if proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                proc.terminate()
            try:
                await asyncio.wait_for(proc.wait(), self.shutdown_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Tool server '{self.spec.name}' ignored SIGTERM, killing")
                with contextlib.suppress(ProcessLookupError):
                    proc.kill()
                await proc.wait()
        logger.info(f"Tool server '{self.spec.name}' stopped (code={proc.returncode})")


class InProcessChannel:
    """Connect a ToolServerClient directly to a ToolServer object."""

    def __init__(self, server: ToolServer):
        self.server = server
        self._rpc = JsonRpcClient(self._send, name=server.name)
        self._tasks: set[asyncio.Task] = set()

    async def __aenter__(self) -> ToolServerClient:
        client = ToolServerClient(self._rpc, self.server.name)
        await client.initialize()
        return client

    async def __aexit__(self, exc_type, exc, tb) -> None:
        for task in self._tasks:
            task.cancel()
        self._rpc.close()

    async def _send(self, line: str) -> None:
        task = asyncio.create_task(self._deliver(line))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, line: str) -> None:
        reply = await self.server.handle_line(line)
        if reply is not None:
            self._rpc.feed(reply)
