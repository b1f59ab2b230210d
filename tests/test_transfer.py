"""Tests for workspace, credential staging, subprocess streaming, dump and tunnel."""

import asyncio
import io
import socket
import stat
import sys
import textwrap
from pathlib import Path

import pytest
from rich.console import Console

from rethink_pull.config.models import TunnelConfig
from rethink_pull.errors import CleanupError, ProcessError, TunnelError
from rethink_pull.transfer.credentials import CredentialStore
from rethink_pull.transfer.dump import dump_command, dump_database
from rethink_pull.transfer.process import ConsoleStream, ProcessRunner, iter_lines
from rethink_pull.transfer.tunnel import TunnelHandle, TunnelManager, port_is_open
from rethink_pull.transfer.workspace import ARCHIVE_NAME, Workspace

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions and scripts")


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _string_console(terminal: bool = False) -> Console:
    return Console(file=io.StringIO(), force_terminal=terminal, width=200, color_system=None)


# ==================================================================
# Workspace
# ==================================================================


class TestWorkspace:
    def test_create_and_paths(self, tmp_path: Path) -> None:
        ws = Workspace.create(tmp_path)
        assert ws.path.is_dir()
        assert ws.path.parent == tmp_path
        assert ws.path.name.isdigit()
        assert ws.archive_path == ws.path / ARCHIVE_NAME
        assert ws.credential_path("prod", "remote") == ws.path / "prod-remote.txt"

    def test_names_never_collide(self, tmp_path: Path) -> None:
        paths = {Workspace.create(tmp_path).path for _ in range(20)}
        assert len(paths) == 20

    def test_remove_is_recursive_and_idempotent(self, tmp_path: Path) -> None:
        ws = Workspace.create(tmp_path)
        (ws.path / "nested").mkdir()
        (ws.path / "nested" / "users.json").write_text("[]")

        ws.remove()
        ws.remove()

        assert ws.removed
        assert not ws.path.exists()

    def test_remove_failure_is_cleanup_error(self, tmp_path: Path, monkeypatch) -> None:
        ws = Workspace.create(tmp_path)

        def _fail(path):
            raise PermissionError("denied")

        monkeypatch.setattr("rethink_pull.transfer.workspace.shutil.rmtree", _fail)
        with pytest.raises(CleanupError, match="denied"):
            ws.remove()

    def test_context_manager_removes(self, tmp_path: Path) -> None:
        with Workspace.create(tmp_path) as ws:
            path = ws.path
        assert not path.exists()


# ==================================================================
# Credentials
# ==================================================================


class TestCredentialStore:
    def test_stage_writes_exact_bytes(self, tmp_path: Path) -> None:
        store = CredentialStore()
        path = store.stage(tmp_path / "prod-remote.txt", "s3cr3t")
        assert path.read_bytes() == b"s3cr3t"
        assert store.paths == [path]

    @posix_only
    def test_stage_is_owner_only(self, tmp_path: Path) -> None:
        target = tmp_path / "prod-local.txt"
        target.write_text("old")
        target.chmod(0o644)

        CredentialStore().stage(target, "new")

        assert stat.S_IMODE(target.stat().st_mode) == 0o600
        assert target.read_text() == "new"

    def test_discard_removes_all(self, tmp_path: Path) -> None:
        store = CredentialStore()
        a = store.stage(tmp_path / "a.txt", "1")
        b = store.stage(tmp_path / "b.txt", "2")
        a.unlink()  # already gone is fine

        store.discard()

        assert not b.exists()
        assert store.paths == []


# ==================================================================
# Subprocess streaming
# ==================================================================


class TestIterLines:
    async def test_splits_on_carriage_returns(self) -> None:
        reader = asyncio.StreamReader()
        reader.feed_data(b"[==    ] 10%\r[===   ] 20%\rDone\n")
        reader.feed_data(b"tail without newline")
        reader.feed_eof()

        lines = [line async for line in iter_lines(reader)]

        assert lines == ["[==    ] 10%", "[===   ] 20%", "Done", "tail without newline"]

    async def test_multibyte_character_split_across_reads(self) -> None:
        reader = asyncio.StreamReader()
        reader.feed_data("caf\u00e9 \u2713\n".encode())
        reader.feed_data(b"\xc3")  # truncated at EOF
        reader.feed_eof()

        lines = [line async for line in iter_lines(reader, chunk_size=1)]

        assert lines == ["caf\u00e9 \u2713", "\ufffd"]


class TestConsoleStream:
    def test_progress_lines_redrawn_on_terminal(self) -> None:
        console = _string_console(terminal=True)
        stream = ConsoleStream(console)

        stream.line("[=     ] 10%")
        stream.line("[===   ] 50%")
        stream.line("Done")

        out = console.file.getvalue()
        assert "\r\x1b[2K[=     ] 10%\r\x1b[2K[===   ] 50%\nDone" in out

    def test_plain_lines_when_not_terminal(self) -> None:
        console = _string_console()
        stream = ConsoleStream(console)

        stream.line("[===   ] 50%")
        stream.line("Done")

        assert console.file.getvalue() == "[===   ] 50%\nDone\n"


class TestProcessRunner:
    async def test_success_streams_output(self) -> None:
        console = _string_console()
        runner = ProcessRunner(console)

        await runner.run([sys.executable, "-c", "print('exported 3 tables')"], stage="dump")

        assert "exported 3 tables" in console.file.getvalue()

    async def test_nonzero_exit_raises_with_stage_and_table(self) -> None:
        console = _string_console()
        runner = ProcessRunner(console)
        script = "import sys; print('partial'); print('boom', file=sys.stderr); sys.exit(3)"

        with pytest.raises(ProcessError) as exc_info:
            await runner.run([sys.executable, "-c", script], stage="import", table="users")

        assert exc_info.value.stage == "import"
        assert exc_info.value.exit_code == 3
        assert exc_info.value.table == "users"
        out = console.file.getvalue()
        assert "partial" in out
        assert "boom" in out

    async def test_missing_binary(self) -> None:
        runner = ProcessRunner(_string_console())
        with pytest.raises(ProcessError) as exc_info:
            await runner.run(["rethink-pull-no-such-binary"], stage="dump")
        assert exc_info.value.exit_code == 127


# ==================================================================
# Dump
# ==================================================================


class _RecordingRunner:
    def __init__(self) -> None:
        self.calls: list[tuple[list[str], str, str | None]] = []

    async def run(self, args, stage, table=None):
        self.calls.append((list(args), stage, table))


class TestDump:
    def test_command_uses_password_file(self, tmp_path: Path) -> None:
        pwd = CredentialStore().stage(tmp_path / "prod-remote.txt", "s3cr3t")
        args = dump_command("127.0.0.1:9999", "prod", tmp_path / ARCHIVE_NAME, pwd)

        assert args[:2] == ["rethinkdb", "dump"]
        assert args[args.index("-c") + 1] == "127.0.0.1:9999"
        assert args[args.index("-e") + 1] == "prod"
        assert args[args.index("-f") + 1] == str(tmp_path / ARCHIVE_NAME)
        assert args[args.index("--password-file") + 1] == str(pwd)
        assert not any("s3cr3t" in arg for arg in args)

    async def test_dump_database_runs_dump_stage(self, tmp_path: Path) -> None:
        runner = _RecordingRunner()
        archive = tmp_path / ARCHIVE_NAME

        result = await dump_database(
            runner, "db:28015", "prod", archive, tmp_path / "pwd.txt", rethinkdb_bin="/opt/rethinkdb"
        )

        assert result == archive
        [(args, stage, table)] = runner.calls
        assert args[0] == "/opt/rethinkdb"
        assert stage == "dump"
        assert table is None


# ==================================================================
# Tunnel
# ==================================================================


FAKE_SSH = textwrap.dedent(
    """\
    import socket, sys, time
    spec = sys.argv[sys.argv.index("-L") + 1]
    host, port = spec.split(":")[0], int(spec.split(":")[1])
    server = socket.socket()
    server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    server.bind((host, port))
    server.listen()
    while True:
        time.sleep(1)
    """
)

NOISY_SSH = textwrap.dedent(
    """\
    import pathlib, socket, sys, time
    spec = sys.argv[sys.argv.index("-L") + 1]
    host, port = spec.split(":")[0], int(spec.split(":")[1])
    server = socket.socket()
    server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    server.bind((host, port))
    server.listen()
    time.sleep(0.5)
    for i in range(4000):
        sys.stderr.write("debug1: channel %d: keepalive chatter\\n" % i)
    sys.stderr.flush()
    pathlib.Path(MARKER).touch()
    while True:
        time.sleep(1)
    """
)


class TestTunnelCommand:
    def test_forward_spec_and_keep_alive(self) -> None:
        config = TunnelConfig(username="deploy", host="db.example.com")
        cmd = TunnelManager().command(config)

        assert cmd[0] == "ssh"
        assert "-N" in cmd
        assert cmd[cmd.index("-L") + 1] == "127.0.0.1:9999:127.0.0.1:28015"
        assert cmd[cmd.index("-p") + 1] == "22"
        assert "ServerAliveInterval=30" in cmd
        assert "ExitOnForwardFailure=yes" in cmd
        assert cmd[-1] == "deploy@db.example.com"

    def test_no_keep_alive_and_identity(self) -> None:
        config = TunnelConfig(
            username="u", host="h", keep_alive=False, identity_file="~/.ssh/id_ed25519"
        )
        cmd = TunnelManager().command(config)

        assert not any(arg.startswith("ServerAlive") for arg in cmd)
        identity = cmd[cmd.index("-i") + 1]
        assert not identity.startswith("~")
        assert identity.endswith(".ssh/id_ed25519")


class TestTunnelManager:
    async def test_requires_username_and_host(self) -> None:
        with pytest.raises(TunnelError, match="required"):
            await TunnelManager().open(TunnelConfig(host="h"))

    async def test_port_in_use(self) -> None:
        port = _free_port()
        server = await asyncio.start_server(lambda r, w: w.close(), "127.0.0.1", port)
        try:
            with pytest.raises(TunnelError, match="already in use"):
                await TunnelManager().open(
                    TunnelConfig(username="u", host="h", local_port=port)
                )
        finally:
            server.close()
            await server.wait_closed()

    async def test_missing_ssh_binary(self) -> None:
        manager = TunnelManager(ssh_bin="rethink-pull-no-such-ssh")
        with pytest.raises(TunnelError, match="not found"):
            await manager.open(TunnelConfig(username="u", host="h", local_port=_free_port()))

    async def test_early_exit_is_tunnel_error(self) -> None:
        # The interpreter rejects ssh's "-N" flag and exits immediately.
        manager = TunnelManager(ssh_bin=sys.executable, poll_interval=0.05)
        with pytest.raises(TunnelError, match="SSH tunnel failed"):
            await manager.open(TunnelConfig(username="u", host="h", local_port=_free_port()))

    @posix_only
    async def test_open_waits_for_forward_and_close(self, tmp_path: Path) -> None:
        server_py = tmp_path / "fake_ssh.py"
        server_py.write_text(FAKE_SSH)
        fake_ssh = tmp_path / "ssh"
        fake_ssh.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{server_py}" "$@"\n')
        fake_ssh.chmod(0o755)
        port = _free_port()

        manager = TunnelManager(ssh_bin=str(fake_ssh), poll_interval=0.05)
        handle = await manager.open(
            TunnelConfig(username="u", host="h", local_port=port, connect_timeout=10)
        )
        try:
            assert handle.endpoint == f"127.0.0.1:{port}"
            assert await port_is_open("127.0.0.1", port)
        finally:
            await handle.close()
            await handle.close()

        assert handle.closed
        assert handle._process.returncode is not None

    @posix_only
    async def test_stderr_is_drained_while_open(self, tmp_path: Path) -> None:
        marker = tmp_path / "stderr-written"
        server_py = tmp_path / "noisy_ssh.py"
        server_py.write_text(f"MARKER = {str(marker)!r}\n" + NOISY_SSH)
        fake_ssh = tmp_path / "ssh"
        fake_ssh.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{server_py}" "$@"\n')
        fake_ssh.chmod(0o755)
        port = _free_port()

        manager = TunnelManager(ssh_bin=str(fake_ssh), poll_interval=0.05)
        handle = await manager.open(
            TunnelConfig(username="u", host="h", local_port=port, connect_timeout=10)
        )
        try:
            # ~160 KiB of stderr only gets through if something keeps reading it
            for _ in range(200):
                if marker.exists():
                    break
                await asyncio.sleep(0.05)
            assert marker.exists()
            assert handle._drain is not None
        finally:
            await handle.close()

        assert handle._drain.done()

    async def test_timeout_closes_partial_handle(self, monkeypatch) -> None:
        closed: list[TunnelHandle] = []
        original_close = TunnelHandle.close

        async def _tracking_close(self, grace=5.0):
            closed.append(self)
            await original_close(self, grace)

        monkeypatch.setattr(TunnelHandle, "close", _tracking_close)
        # A process that never opens the port: the interpreter sleeping
        manager = TunnelManager(ssh_bin=sys.executable, poll_interval=0.05)
        monkeypatch.setattr(
            manager,
            "command",
            lambda config: [sys.executable, "-c", "import time; time.sleep(30)"],
        )

        with pytest.raises(TunnelError, match="not ready"):
            await manager.open(
                TunnelConfig(username="u", host="h", local_port=_free_port(), connect_timeout=0.3)
            )

        assert len(closed) == 1
        assert closed[0]._process.returncode is not None
