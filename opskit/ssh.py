"""Host connection handling for vps-ops-kit."""

import io
import secrets
import shlex
from pathlib import Path

from fabric import Connection
from invoke import Context, Result
from paramiko.ssh_exception import NoValidConnectionsError, SSHException
from rich.console import Console

from opskit.config import OpsKitConfig

console = Console()

# Errors the transport can raise while talking to the host
TRANSPORT_ERRORS = (SSHException, NoValidConnectionsError, OSError)


class SSHConnection:
    """Manages the connection to the target server.

    With ``auth_method: local`` commands run on this machine through an
    invoke ``Context`` and files are read and written directly.
    """

    def __init__(self, config: OpsKitConfig):
        self.config = config
        self.server = config.server
        self._connection: Connection | Context | None = None

    def _get_connect_kwargs(self) -> dict:
        """Get connection kwargs based on auth method."""
        if self.server.auth_method == "password":
            return {"password": self.server.ssh_password}
        else:
            key_path = Path(self.server.ssh_key_path).expanduser()
            return {"key_filename": str(key_path)}

    @property
    def is_local(self) -> bool:
        return self.server.is_local

    @property
    def conn(self) -> Connection | Context:
        """Get or create the connection."""
        if self._connection is None:
            if self.is_local:
                self._connection = Context()
            else:
                self._connection = Connection(
                    host=self.server.host,
                    user=self.server.ssh_user,
                    port=self.server.ssh_port,
                    connect_kwargs=self._get_connect_kwargs(),
                )
        return self._connection

    @property
    def needs_sudo(self) -> bool:
        return self.server.ssh_user != "root" and not self.is_local

    def test_connection(self) -> bool:
        """Test if we can connect to the server."""
        try:
            result = self.conn.run("echo 'connection test'", hide=True)
            return result.ok
        except TRANSPORT_ERRORS as e:
            console.print(f"[red]Connection failed: {e}[/red]")
            return False

    def run(self, command: str, hide: bool = False, warn: bool = False, **kwargs) -> str:
        """Run a command on the server and return stdout."""
        result = self.conn.run(command, hide=hide, warn=warn, **kwargs)
        return result.stdout.strip()

    def sudo(self, command: str, hide: bool = False, warn: bool = False, **kwargs) -> str:
        """Run a command with sudo on the server."""
        if not self.needs_sudo:
            return self.run(command, hide=hide, warn=warn, **kwargs)

        result = self.conn.sudo(command, hide=hide, warn=warn, **kwargs)
        return result.stdout.strip()

    def check(self, command: str, sudo: bool = True, **kwargs) -> Result:
        """Run a command without raising on a non-zero exit.

        Returns the invoke ``Result`` so callers can look at ``ok``,
        ``stdout`` and ``stderr``.
        """
        # Never forward our own stdin; commands that need input pass in_stream
        kwargs.setdefault("in_stream", False)
        if sudo and self.needs_sudo:
            return self.conn.sudo(command, warn=True, hide=True, **kwargs)
        return self.conn.run(command, warn=True, hide=True, **kwargs)

    def command_exists(self, name: str) -> bool:
        """Check if a command is available on the server."""
        result = self.check(f"command -v {shlex.quote(name)}", sudo=False)
        return result.ok

    def file_exists(self, path: str) -> bool:
        """Check if a file exists on the server."""
        if self.is_local:
            return Path(path).is_file()
        result = self.check(f"test -f {shlex.quote(path)}")
        return result.ok

    def read_file(self, path: str) -> str | None:
        """Return the exact contents of a file, or None if it does not exist."""
        if self.is_local:
            local = Path(path)
            if not local.exists():
                return None
            return local.read_bytes().decode()

        result = self.check(f"cat {shlex.quote(path)}")
        if result.ok:
            return result.stdout
        if not self.file_exists(path):
            return None
        raise OSError(f"Cannot read {path}: {result.stderr.strip()}")

    def write_file(self, path: str, content: str, mode: str | None = None) -> None:
        """Replace a file's contents byte for byte.

        Content is uploaded over SFTP to a temp file and copied into place,
        so an existing file keeps its owner and permissions.
        """
        if self.is_local:
            Path(path).write_bytes(content.encode())
            if mode:
                Path(path).chmod(int(mode, 8))
            return

        tmp = f"/tmp/opskit-{secrets.token_hex(6)}"
        self.conn.put(io.BytesIO(content.encode()), remote=tmp)
        result = self.check(f"cp {tmp} {shlex.quote(path)}")
        self.check(f"rm -f {tmp}", sudo=False)
        if not result.ok:
            raise OSError(f"Cannot write {path}: {result.stderr.strip()}")
        if mode:
            self.sudo(f"chmod {mode} {shlex.quote(path)}", hide=True)

    def remove_file(self, path: str) -> None:
        """Delete a file if it exists."""
        if self.is_local:
            Path(path).unlink(missing_ok=True)
            return
        result = self.check(f"rm -f {shlex.quote(path)}")
        if not result.ok:
            raise OSError(f"Cannot remove {path}: {result.stderr.strip()}")

    def get_os_info(self) -> dict:
        """Get information about the remote OS."""
        info = {}

        result = self.run("cat /etc/os-release", hide=True)
        for line in result.split("\n"):
            if "=" in line:
                key, value = line.split("=", 1)
                info[key] = value.strip('"')

        info["kernel"] = self.run("uname -r", hide=True)

        return info

    def close(self) -> None:
        """Close the connection."""
        if isinstance(self._connection, Connection):
            self._connection.close()
