"""
Base classes for hosts that run ipset.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel

from ..core.records import Record


class DeviceCredentials(BaseModel):
    """Credentials for SSH authentication."""

    username: Optional[str] = None
    password: Optional[str] = None
    private_key: Optional[str] = None


class DeviceConnection(BaseModel):
    """Where the ipset binary lives. ``host=None`` means this machine."""

    host: Optional[str] = None
    port: int = 22
    timeout: int = 30
    use_sudo: bool = False
    credentials: DeviceCredentials = DeviceCredentials()

    @property
    def is_local(self) -> bool:
        return self.host in (None, "", "localhost", "127.0.0.1")


class CommandResult(BaseModel):
    """Result of executing a command on a host."""

    command: str
    success: bool
    output: str
    error: Optional[str] = None
    exit_code: Optional[int] = None
    execution_time: float


class IpsetDevice(ABC):
    """
    Abstract base class for a host whose ipset state can be read and written.

    The record store never talks to a device; only the CLI does.
    """

    def __init__(self, connection: DeviceConnection):
        self.connection = connection
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @abstractmethod
    async def connect(self) -> bool:
        """Connect to the host."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Disconnect from the host."""
        pass

    @abstractmethod
    async def execute_command(
        self, command: str, input_text: Optional[str] = None
    ) -> CommandResult:
        """Execute a command, optionally feeding ``input_text`` on stdin."""
        pass

    @abstractmethod
    async def list_sets(self) -> List[str]:
        """Names of the sets currently loaded."""
        pass

    @abstractmethod
    async def save(self, set_name: Optional[str] = None) -> str:
        """Restore-format dump of one set, or of all sets."""
        pass

    @abstractmethod
    async def read_records(self, set_name: Optional[str] = None) -> List[Record]:
        """Parse the live sets into records."""
        pass

    @abstractmethod
    async def restore(self, text: str, dry_run: bool = True) -> CommandResult:
        """Load restore-format text into the live sets."""
        pass

    def __str__(self) -> str:
        return f"{self.__class__.__name__}({self.connection.host or 'localhost'})"

    def __repr__(self) -> str:
        return self.__str__()
