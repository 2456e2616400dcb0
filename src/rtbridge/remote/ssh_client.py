"""Lightweight SSH client wrapper for talking to the acquisition host."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import logging
import paramiko
import shlex


logger = logging.getLogger(__name__)

_RECV_CHUNK = 65536


@dataclass
class Host:
    """Connection details for the acquisition computer."""

    name: str
    host: str
    user: str
    password: Optional[str] = None
    port: int = 22
    key_filename: Optional[str] = None
    timeout: float = 10.0


class LineChannel:
    """
    Non-blocking line reader on top of a running remote command.

    :meth:`read_lines` returns whatever complete lines are buffered on the
    channel right now and never waits for more, so it can be called once per
    poll cycle from a single-threaded loop.
    """

    def __init__(self, channel: paramiko.Channel, *, encoding: str = "utf-8") -> None:
        self._channel = channel
        self._encoding = encoding
        self._pending = b""
        self._pending_err = b""

    def read_lines(self) -> list[str]:
        while self._channel.recv_ready():
            chunk = self._channel.recv(_RECV_CHUNK)
            if not chunk:
                break
            self._pending += chunk
        self._drain_stderr()

        if b"\n" not in self._pending:
            return []
        complete, self._pending = self._pending.rsplit(b"\n", 1)
        text = complete.decode(self._encoding, errors="replace")
        return [line.rstrip("\r") for line in text.split("\n") if line.strip()]

    def _drain_stderr(self) -> None:
        while self._channel.recv_stderr_ready():
            chunk = self._channel.recv_stderr(_RECV_CHUNK)
            if not chunk:
                break
            self._pending_err += chunk
        if b"\n" in self._pending_err:
            complete, self._pending_err = self._pending_err.rsplit(b"\n", 1)
            for line in complete.decode(self._encoding, errors="replace").splitlines():
                if line.strip():
                    logger.warning("remote stderr: %s", line)

    @property
    def finished(self) -> bool:
        """True once the remote command exited and all output was consumed."""
        return self._channel.exit_status_ready() and not self._channel.recv_ready()

    def close(self) -> None:
        self._channel.close()


class SSHClient:
    """Simple wrapper around ``paramiko`` for running remote commands."""

    def __init__(self, host: Host) -> None:
        self.host = host
        self._client: paramiko.SSHClient = paramiko.SSHClient()
        self._client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    # ------------------------------------------------------------------ internals
    def _ensure_client(self) -> paramiko.SSHClient:
        transport = self._client.get_transport()
        if not (transport and transport.is_active()):
            self.connect()
        return self._client

    # ------------------------------------------------------------------ connection
    def connect(self) -> None:
        transport = self._client.get_transport()
        if transport and transport.is_active():
            return

        logger.info(
            "Connecting to %s@%s:%s", self.host.user, self.host.host, self.host.port
        )

        use_keys = self.host.password is None
        self._client.connect(
            hostname=self.host.host,
            username=self.host.user,
            port=self.host.port,
            password=self.host.password,
            key_filename=self.host.key_filename,
            look_for_keys=use_keys,
            allow_agent=use_keys,
            timeout=self.host.timeout,
        )

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------ commands
    def run(self, command: str, *, cwd: Optional[str] = None) -> str:
        """Run a short command to completion and return its stdout."""
        client = self._ensure_client()
        if cwd:
            command = f"cd {shlex.quote(cwd)} && {command}"
        _, stdout, stderr = client.exec_command(command, timeout=self.host.timeout)
        output = stdout.read().decode("utf-8", errors="replace")
        status = stdout.channel.recv_exit_status()
        if status != 0:
            err = stderr.read().decode("utf-8", errors="replace").strip()
            raise RuntimeError(f"remote command {command!r} failed ({status}): {err}")
        return output

    def open_lines(self, command: str, *, cwd: Optional[str] = None) -> LineChannel:
        """Start a long-lived command and return a non-blocking reader for it."""
        client = self._ensure_client()
        if cwd:
            command = f"cd {shlex.quote(cwd)} && {command}"
        transport = client.get_transport()
        assert transport is not None
        channel = transport.open_session()
        channel.exec_command(command)
        return LineChannel(channel)
