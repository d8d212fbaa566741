"""
Hosts running ipset, read and written by the CLI.
"""

from .base import CommandResult, DeviceConnection, DeviceCredentials, IpsetDevice
from .linux_ipset import LinuxIpset

__all__ = [
    "IpsetDevice",
    "DeviceConnection",
    "DeviceCredentials",
    "CommandResult",
    "LinuxIpset",
]
