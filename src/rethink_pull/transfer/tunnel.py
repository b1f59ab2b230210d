"""SSH port forwarding to the remote database.

The tunnel is an ``ssh -N -L`` child process.  ``TunnelManager.open()``
returns once the forwarded local port accepts connections; the returned
``TunnelHandle`` owns the ssh process and must be closed by the caller.

Usage:
    from rethink_pull.config import TunnelConfig
    from rethink_pull.transfer.tunnel import TunnelManager

    handle = await TunnelManager().open(
        TunnelConfig(username="deploy", host="db.example.com")
    )
    try:
        ...  # connect to handle.endpoint
    finally:
        await handle.close()
"""

import asyncio
import logging
from pathlib import Path

from rethink_pull.config.models import TunnelConfig
from rethink_pull.errors import TunnelError
from rethink_pull.transfer.process import iter_lines

logger = logging.getLogger(__name__)

KEEP_ALIVE_INTERVAL = 30
KEEP_ALIVE_COUNT_MAX = 3


async def port_is_open(host: str, port: int) -> bool:
    """Return True if a TCP connection to ``host:port`` succeeds."""
    try:
        _, writer = await asyncio.open_connection(host, port)
    except OSError:
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


class TunnelHandle:
    """Live SSH port forward.

    Args:
        process: The running ``ssh`` process.
        config: Tunnel parameters the process was started with.
    """

    def __init__(self, process: asyncio.subprocess.Process, config: TunnelConfig) -> None:
        self._process = process
        self.config = config
        self._closed = False
        self._drain: asyncio.Task | None = None

    @property
    def endpoint(self) -> str:
        return self.config.local_endpoint

    @property
    def closed(self) -> bool:
        return self._closed

    def start_draining(self) -> None:
        """Log ssh stderr in the background so the pipe never fills up."""
        if self._drain is None and self._process.stderr is not None:
            self._drain = asyncio.create_task(self._drain_stderr(self._process.stderr))

    async def _drain_stderr(self, stream: asyncio.StreamReader) -> None:
        async for line in iter_lines(stream):
            logger.debug("ssh: %s", line)

    async def close(self, grace: float = 5.0) -> None:
        """Stop the ssh process. Calling again is a no-op."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._stop(grace)
        finally:
            if self._drain is not None:
                self._drain.cancel()
                await asyncio.gather(self._drain, return_exceptions=True)

    async def _stop(self, grace: float) -> None:
        if self._process.returncode is not None:
            return
        self._process.terminate()
        try:
            await asyncio.wait_for(self._process.wait(), timeout=grace)
            logger.info("SSH tunnel closed")
        except asyncio.TimeoutError:
            self._process.kill()
            await self._process.wait()
            logger.warning("SSH tunnel forcefully terminated")


class TunnelManager:
    """Opens SSH tunnels.

    Args:
        ssh_bin: Name or path of the OpenSSH client.
        poll_interval: Seconds between readiness checks of the local port.
    """

    def __init__(self, ssh_bin: str = "ssh", poll_interval: float = 0.2) -> None:
        self.ssh_bin = ssh_bin
        self.poll_interval = poll_interval

    def command(self, config: TunnelConfig) -> list[str]:
        """Build the ssh argument list for ``config``."""
        cmd = [
            self.ssh_bin,
            "-N",
            "-L", f"{config.local_host}:{config.local_port}:{config.dst_host}:{config.dst_port}",
            "-p", str(config.port),
            "-o", "ExitOnForwardFailure=yes",
            "-o", "BatchMode=yes",
        ]
        if config.keep_alive:
            cmd += [
                "-o", f"ServerAliveInterval={KEEP_ALIVE_INTERVAL}",
                "-o", f"ServerAliveCountMax={KEEP_ALIVE_COUNT_MAX}",
            ]
        if config.identity_file:
            cmd += ["-i", str(Path(config.identity_file).expanduser())]
        cmd.append(f"{config.username}@{config.host}")
        return cmd

    async def open(self, config: TunnelConfig) -> TunnelHandle:
        """Start the port forward and wait until it accepts connections.

        If anything fails after ssh has started, the partially open handle
        is closed before the error is raised.

        Raises:
            TunnelError: If ssh is missing, exits early, the local port is
                already taken, or the forward is not ready within
                ``config.connect_timeout`` seconds.
        """
        if not config.username or not config.host:
            raise TunnelError("Tunnel username and host are required")

        if await port_is_open(config.local_host, config.local_port):
            raise TunnelError(f"Local port {config.local_endpoint} is already in use")

        logger.info("Starting SSH tunnel: %s@%s:%s", config.username, config.host, config.port)
        logger.info(
            "Forwarding %s -> %s:%s", config.local_endpoint, config.dst_host, config.dst_port
        )

        try:
            process = await asyncio.create_subprocess_exec(
                *self.command(config),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise TunnelError("SSH command not found. Please install OpenSSH client.") from e

        handle = TunnelHandle(process, config)
        try:
            await self._wait_until_ready(process, config)
        except BaseException:
            await handle.close()
            raise

        handle.start_draining()
        logger.info("SSH tunnel established on %s", config.local_endpoint)
        return handle

    async def _wait_until_ready(
        self, process: asyncio.subprocess.Process, config: TunnelConfig
    ) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + config.connect_timeout
        while True:
            if process.returncode is not None:
                stderr = await process.stderr.read() if process.stderr else b""
                raise TunnelError(
                    f"SSH tunnel failed: {stderr.decode('utf-8', errors='ignore').strip()}"
                )
            if await port_is_open(config.local_host, config.local_port):
                return
            if loop.time() >= deadline:
                raise TunnelError(
                    f"SSH tunnel not ready after {config.connect_timeout:g}s"
                )
            await asyncio.sleep(self.poll_interval)
