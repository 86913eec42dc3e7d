"""
Safety partitioner — which installs may run side by side.

Some installers misbehave when run concurrently with anything else:
GPU drivers, virtualization platforms, interactive launchers,
database servers, VPN clients. A Denylist is an ordered, immutable
table of glob patterns for such package refs. Matching actions run
sequentially, everything else is parallel-safe.

The table is data: it can be listed, printed and extended without
touching the engine.
"""

from __future__ import annotations

import fnmatch
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_PATTERNS: tuple[str, ...] = (
    # GPU drivers and control panels
    "Nvidia.*",
    "*GeForce*",
    "AMD.*Radeon*",
    "AMD.*Adrenalin*",
    "Intel.*Graphics*",
    "nvidia-driver*",
    # Virtualization
    "Oracle.VirtualBox*",
    "*virtualbox*",
    "VMware.*",
    "Docker.DockerDesktop*",
    "*Hyper-V*",
    "qemu*",
    # Installer-based launchers
    "Valve.Steam",
    "EpicGames.EpicGamesLauncher",
    "ElectronicArts.EADesktop",
    "Ubisoft.Connect",
    "Blizzard.BattleNet",
    "GOG.Galaxy",
    # Database servers
    "Microsoft.SQLServer*",
    "PostgreSQL.PostgreSQL*",
    "postgresql*",
    "Oracle.MySQL*",
    "mysql-server*",
    "MariaDB.Server*",
    "MongoDB.Server*",
    # VPN software
    "*OpenVPN*",
    "WireGuard.WireGuard",
    "*NordVPN*",
    "*ExpressVPN*",
    "Cisco.*AnyConnect*",
    "*GlobalProtect*",
)


@dataclass(frozen=True)
class Denylist:
    """Ordered glob patterns, matched case-insensitively against refs."""

    patterns: tuple[str, ...] = DEFAULT_PATTERNS

    def match(self, ref: str) -> str | None:
        """First pattern matching ``ref``, or None."""
        lowered = ref.lower()
        for pattern in self.patterns:
            if fnmatch.fnmatchcase(lowered, pattern.lower()):
                return pattern
        return None

    def is_unsafe(self, ref: str) -> bool:
        return self.match(ref) is not None

    def extend(self, patterns: Iterable[str]) -> Denylist:
        """New table with extra patterns appended (duplicates dropped)."""
        merged = tuple(dict.fromkeys(self.patterns + tuple(patterns)))
        return Denylist(patterns=merged)

    def __iter__(self):
        return iter(self.patterns)

    def __len__(self) -> int:
        return len(self.patterns)


DEFAULT_DENYLIST = Denylist()


@dataclass
class Partition:
    """Actions split by concurrency safety, each group in input order."""

    parallel: list = field(default_factory=list)
    sequential: list = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.parallel) + len(self.sequential)


def partition(
    actions: Iterable,
    denylist: Denylist = DEFAULT_DENYLIST,
    serial: bool = False,
) -> Partition:
    """Split actions into parallel-safe and sequential groups.

    Actions without a ref have nothing to execute and are dropped.
    With ``serial`` every action goes to the sequential group, for
    drivers whose package manager cannot install concurrently.
    """
    result = Partition()
    for action in actions:
        ref = getattr(action, "ref", "")
        if not ref:
            logger.debug("Dropping action '%s': no ref", action.id)
            continue
        pattern = denylist.match(ref)
        if serial:
            result.sequential.append(action)
        elif pattern:
            logger.debug("'%s' runs sequentially (matches %s)", ref, pattern)
            result.sequential.append(action)
        else:
            result.parallel.append(action)
    return result
