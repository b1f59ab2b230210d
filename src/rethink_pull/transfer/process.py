"""Subprocess runner that streams tool output to the console.

The dump and import tools report progress on stdout.  Output is split on
both ``\\n`` and ``\\r`` so in-place progress bars arrive as separate
lines; a line starting with ``[`` (a progress marker) is redrawn in place
by the next line when the console is a terminal.

Usage:
    from rich.console import Console
    from rethink_pull.transfer.process import ProcessRunner

    runner = ProcessRunner(Console())
    await runner.run(["rethinkdb", "dump", ...], stage="dump")
"""

import asyncio
import codecs
import logging
import re
from collections.abc import AsyncIterator, Callable

from rich.console import Console

from rethink_pull.errors import ProcessError

logger = logging.getLogger(__name__)

_LINE_BREAK = re.compile(r"[\r\n]")

# Carriage return + erase line
_REDRAW = "\r\x1b[2K"


async def iter_lines(stream: asyncio.StreamReader, chunk_size: int = 4096) -> AsyncIterator[str]:
    """Yield non-empty lines from ``stream``, splitting on CR and LF."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    pending = ""
    while True:
        chunk = await stream.read(chunk_size)
        if not chunk:
            break
        pending += decoder.decode(chunk)
        *lines, pending = _LINE_BREAK.split(pending)
        for line in lines:
            if line:
                yield line
    pending += decoder.decode(b"", final=True)
    if pending:
        yield pending


class ConsoleStream:
    """Writes subprocess lines to a rich console, redrawing progress lines."""

    def __init__(self, console: Console) -> None:
        self.console = console
        self._progress_open = False

    def line(self, text: str) -> None:
        is_progress = text.startswith("[")
        if self.console.is_terminal:
            if is_progress:
                self.console.file.write(_REDRAW + text)
                self.console.file.flush()
                self._progress_open = True
                return
            if self._progress_open:
                self.console.file.write("\n")
                self._progress_open = False
        self.console.print(text, markup=False, highlight=False)

    def error(self, text: str) -> None:
        self.finish()
        self.console.print(text, style="red", markup=False, highlight=False)

    def finish(self) -> None:
        """Terminate a progress line left open by the last write."""
        if self._progress_open:
            self.console.file.write("\n")
            self.console.file.flush()
            self._progress_open = False


class ProcessRunner:
    """Runs external tools and raises ``ProcessError`` on failure.

    Args:
        console: Console receiving the streamed output.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    async def run(self, args: list[str], stage: str, table: str | None = None) -> None:
        """Run ``args`` to completion, streaming stdout/stderr.

        Args:
            args: Program and arguments (no shell).
            stage: Stage name reported in errors (``dump``/``import``).
            table: Table name reported in errors, for imports.

        Raises:
            ProcessError: If the process exits non-zero or the binary is
                missing (``exit_code=127``).
        """
        logger.debug("Executing: %s", " ".join(args))
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            logger.error("%s not found. Install the RethinkDB client tools.", args[0])
            raise ProcessError(stage, 127, table) from e

        out = ConsoleStream(self.console)
        await asyncio.gather(
            _pump(process.stdout, out.line),
            _pump(process.stderr, out.error),
        )
        exit_code = await process.wait()
        out.finish()

        if exit_code != 0:
            raise ProcessError(stage, exit_code, table)


async def _pump(stream: asyncio.StreamReader | None, write: Callable[[str], None]) -> None:
    if stream is None:
        return
    async for line in iter_lines(stream):
        write(line)
