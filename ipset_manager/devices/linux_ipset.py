"""
Linux host running ipset, reached locally or over SSH.
"""

import shlex
import subprocess
import time
from typing import List, Optional

import paramiko

from ..codec.parser import parse
from ..core.errors import SourceUnavailableError
from ..core.logging_config import get_logger
from ..core.records import Record
from .base import CommandResult, DeviceConnection, DeviceCredentials, IpsetDevice

logger = get_logger(__name__)

SYSTEM_SOURCE = "system"


class LinuxIpset(IpsetDevice):
    """ipset on the local machine (subprocess) or a remote one (paramiko)."""

    def __init__(
        self,
        host: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        private_key: Optional[str] = None,
        port: int = 22,
        use_sudo: bool = False,
        timeout: int = 30,
    ):
        credentials = DeviceCredentials(
            username=username,
            password=password,
            private_key=private_key,
        )
        connection = DeviceConnection(
            host=host,
            port=port,
            timeout=timeout,
            use_sudo=use_sudo,
            credentials=credentials,
        )
        super().__init__(connection)
        self._ssh_client: Optional[paramiko.SSHClient] = None

    async def connect(self) -> bool:
        """Open the SSH session; a local device is always connected."""
        if self.connection.is_local:
            self._connected = True
            return True

        if not self.connection.credentials.username:
            logger.error("SSH username is required")
            return False

        connect_kwargs = {
            "hostname": self.connection.host,
            "port": self.connection.port,
            "username": self.connection.credentials.username,
            "timeout": self.connection.timeout,
            "look_for_keys": True,
            "allow_agent": True,
        }
        if self.connection.credentials.private_key:
            connect_kwargs["key_filename"] = self.connection.credentials.private_key
            connect_kwargs["look_for_keys"] = False
            logger.debug("Using specified private key for authentication")
        if self.connection.credentials.password:
            connect_kwargs["password"] = self.connection.credentials.password
            connect_kwargs["look_for_keys"] = False
            connect_kwargs["allow_agent"] = False
            logger.debug("Using provided password for authentication")

        try:
            self._ssh_client = paramiko.SSHClient()
            self._ssh_client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            self._ssh_client.connect(**connect_kwargs)
        except (paramiko.SSHException, OSError) as e:
            self._connected = False
            self._ssh_client = None
            logger.error("Failed to connect to %s: %s", self.connection.host, e)
            return False

        self._connected = True
        logger.info("Connected to %s", self.connection.host)
        return True

    async def disconnect(self) -> None:
        if self._ssh_client:
            self._ssh_client.close()
            self._ssh_client = None
        self._connected = False

    def _build_command(self, command: str) -> str:
        if self.connection.use_sudo:
            return f"sudo {command}"
        return command

    async def execute_command(
        self, command: str, input_text: Optional[str] = None
    ) -> CommandResult:
        """Run a command and capture its output."""
        shell_command = self._build_command(command)
        start_time = time.time()

        if self.connection.is_local:
            result = self._run_local(shell_command, input_text, start_time)
        elif not self._ssh_client:
            result = CommandResult(
                command=command,
                success=False,
                output="",
                error="Not connected to device",
                execution_time=0.0,
            )
        else:
            result = self._run_remote(shell_command, input_text, start_time)

        logger.debug("Executed command: %s", command)
        logger.debug("Result: success=%s, exit_code=%s", result.success, result.exit_code)
        if result.error:
            logger.debug("Error: %s", result.error)
        return result

    def _run_local(
        self, command: str, input_text: Optional[str], start_time: float
    ) -> CommandResult:
        try:
            completed = subprocess.run(
                shlex.split(command),
                input=input_text,
                capture_output=True,
                text=True,
                timeout=self.connection.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            return CommandResult(
                command=command,
                success=False,
                output="",
                error=f"Command execution failed: {e}",
                execution_time=time.time() - start_time,
            )

        return CommandResult(
            command=command,
            success=completed.returncode == 0,
            output=completed.stdout,
            error=completed.stderr or None,
            exit_code=completed.returncode,
            execution_time=time.time() - start_time,
        )

    def _run_remote(
        self, command: str, input_text: Optional[str], start_time: float
    ) -> CommandResult:
        try:
            stdin, stdout, stderr = self._ssh_client.exec_command(command)
            if input_text is not None:
                stdin.write(input_text)
                stdin.channel.shutdown_write()
            stdout_data = stdout.read()
            stderr_data = stderr.read()
            exit_code = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as e:
            return CommandResult(
                command=command,
                success=False,
                output="",
                error=f"Command execution failed: {e}",
                execution_time=time.time() - start_time,
            )

        output = stdout_data.decode("utf-8", errors="replace")
        error = stderr_data.decode("utf-8", errors="replace") if stderr_data else None
        return CommandResult(
            command=command,
            success=exit_code == 0,
            output=output,
            error=error,
            exit_code=exit_code,
            execution_time=time.time() - start_time,
        )

    async def list_sets(self) -> List[str]:
        """Names from ``ipset list -n``."""
        result = await self.execute_command("ipset list -n")
        if not result.success:
            raise SourceUnavailableError(SYSTEM_SOURCE, result.error or "ipset list failed")
        return [line.strip() for line in result.output.splitlines() if line.strip()]

    async def save(self, set_name: Optional[str] = None) -> str:
        """Output of ``ipset save``, for one set or all of them."""
        command = "ipset save"
        source = SYSTEM_SOURCE
        if set_name:
            command = f"ipset save {shlex.quote(set_name)}"
            source = f"{SYSTEM_SOURCE}:{set_name}"

        result = await self.execute_command(command)
        if not result.success:
            raise SourceUnavailableError(source, result.error or "ipset save failed")
        return result.output

    async def read_records(self, set_name: Optional[str] = None) -> List[Record]:
        """Parse one live set, or every live set.

        When reading every set, a set that cannot be saved is logged and
        skipped.
        """
        if set_name:
            text = await self.save(set_name)
            return list(parse(text, f"{SYSTEM_SOURCE}:{set_name}"))

        records: List[Record] = []
        for name in await self.list_sets():
            try:
                text = await self.save(name)
            except SourceUnavailableError as e:
                logger.warning("Failed to get rules for set %s: %s", name, e.reason)
                continue
            records.extend(parse(text, f"{SYSTEM_SOURCE}:{name}"))
        return records

    async def restore(self, text: str, dry_run: bool = True) -> CommandResult:
        """Feed restore-format text to ``ipset restore -exist``."""
        command = "ipset restore -exist"
        if dry_run:
            return CommandResult(
                command=command,
                success=True,
                output=f"DRY RUN: Would execute: {command}\n{text}",
                execution_time=0.0,
            )

        logger.info("Restoring %s lines into %s", len(text.splitlines()), self)
        return await self.execute_command(command, input_text=text)

    async def is_available(self) -> bool:
        """Whether the ipset binary can be found on the host."""
        result = await self.execute_command("ipset --version")
        return result.success
