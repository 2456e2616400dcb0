"""Remote communication helpers for reaching the acquisition computer.

:class:`SSHClient` opens the SSH connection, runs the exporter command on the
acquisition host and hands back a :class:`LineChannel` that streams its
stdout line by line.
"""

from .ssh_client import Host, LineChannel, SSHClient

__all__ = ["Host", "LineChannel", "SSHClient"]
