from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .config import DEFAULT_COMMAND_TIMEOUT, DEFAULT_CONNECT_TIMEOUT, Settings
from .errors import NodeUnreachable

logger = logging.getLogger(__name__)

# ssh exits with 255 when the connection itself failed
SSH_CONNECTION_FAILED = 255


@dataclass
class CommandResult:
    address: str
    command: str
    returncode: int
    output: str = ""
    error: str = ""
    unreachable: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.unreachable

    def raise_for_unreachable(self) -> None:
        if self.unreachable:
            raise NodeUnreachable(self.address, self.error or "connection failed")


class SshExecutor:
    """Run shell commands on routers through the local ssh client.

    Each router address maps to an ssh argv prefix such as
    ``["ssh", "-p", "202", "admin@10.10.3.1"]``; the command string is
    appended as the final argument. Prompting is disabled so a missing key
    fails fast instead of hanging.
    """

    def __init__(
        self,
        ssh_commands: Dict[str, Sequence[str]],
        connect_timeout: int = DEFAULT_CONNECT_TIMEOUT,
        command_timeout: int = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        self.ssh_commands = {k: list(v) for k, v in ssh_commands.items()}
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "SshExecutor":
        return cls(
            settings.ssh_commands,
            connect_timeout=settings.connect_timeout,
            command_timeout=settings.command_timeout,
        )

    def argv_for(self, address: str, command: str) -> Optional[List[str]]:
        base = self.ssh_commands.get(address)
        if not base:
            return None
        return base[:1] + [
            "-o",
            f"ConnectTimeout={self.connect_timeout}",
            "-o",
            "BatchMode=yes",
        ] + base[1:] + [command]

    def run(self, address: str, command: str) -> CommandResult:
        argv = self.argv_for(address, command)
        if argv is None:
            logger.error("No SSH configuration for %s", address)
            return CommandResult(address, command, -1, error="no ssh configuration", unreachable=True)

        logger.debug("ssh %s: %s", address, command)
        try:
            cp = subprocess.run(
                argv,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.command_timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            logger.warning("Timed out after %ss talking to %s", self.command_timeout, address)
            return CommandResult(address, command, 124, error="timeout", unreachable=True)
        except OSError as exc:
            logger.error("Could not start ssh for %s: %s", address, exc)
            return CommandResult(address, command, 127, error=str(exc), unreachable=True)

        unreachable = cp.returncode == SSH_CONNECTION_FAILED
        if unreachable:
            logger.warning("Connection to %s failed: %s", address, cp.stderr.strip())
        elif cp.returncode != 0:
            logger.debug("Command on %s exited %s: %s", address, cp.returncode, cp.stderr.strip())
        return CommandResult(
            address=address,
            command=command,
            returncode=cp.returncode,
            output=cp.stdout,
            error=cp.stderr.strip(),
            unreachable=unreachable,
        )
