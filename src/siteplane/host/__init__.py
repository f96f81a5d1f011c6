"""Host capability interface: commands, ownership, modes, ACLs, and identity lookup."""

from siteplane.host.ops import (
    CommandResult,
    HostCommandError,
    HostOperations,
    OwnerIdentity,
    SystemHostOperations,
)

__all__ = [
    "CommandResult",
    "HostCommandError",
    "HostOperations",
    "OwnerIdentity",
    "SystemHostOperations",
]
