"""
Topology validation for pool redundancy schemes.

Everything in this module is pure: no commands are run and nothing is logged,
so the wizard and the pipeline can both call it freely.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from zroot_installer.errors import ValidationError
from zroot_installer.shared import PoolTopology


@dataclass(frozen=True)
class TopologyVerdict:
    """Outcome of a topology check: ok, or rejected with a reason."""

    topology: PoolTopology
    drive_count: int
    reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.reason is None

    def __bool__(self) -> bool:
        return self.ok


def validate(topology: PoolTopology, drive_count: int) -> TopologyVerdict:
    """Decide whether `drive_count` drives can form a `topology` pool.

    Args:
        topology: Requested redundancy scheme
        drive_count: Number of committed drives

    Returns:
        Verdict carrying a human readable reason when rejected
    """
    minimum = topology.minimum_drives
    if drive_count < minimum:
        plural = "s" if minimum > 1 else ""
        return TopologyVerdict(
            topology,
            drive_count,
            f"{topology.value} requires at least {minimum} drive{plural}, {drive_count} selected",
        )

    # Larger mirrors are built from two-way mirror pairs
    if topology is PoolTopology.MIRROR and drive_count % 2 != 0:
        return TopologyVerdict(
            topology,
            drive_count,
            f"mirror requires an even number of drives, {drive_count} selected",
        )

    return TopologyVerdict(topology, drive_count)


def require_valid(topology: PoolTopology, drive_count: int) -> None:
    """Raise ValidationError when the combination is illegal."""
    verdict = validate(topology, drive_count)
    if not verdict.ok:
        raise ValidationError(verdict.reason)


def allowed_topologies(drive_count: int) -> list[PoolTopology]:
    return [t for t in PoolTopology if validate(t, drive_count).ok]


def vdev_layout(topology: PoolTopology, targets: Sequence[str]) -> list[str]:
    """Build the vdev part of a `zpool create` command line.

    Args:
        topology: Validated redundancy scheme
        targets: Per-device pool members, in selection order

    Returns:
        Argument list, e.g. ["mirror", "a", "b", "mirror", "c", "d"]
    """
    require_valid(topology, len(targets))

    if topology is PoolTopology.STRIPE:
        return list(targets)

    if topology is PoolTopology.MIRROR:
        layout: list[str] = []
        for i in range(0, len(targets), 2):
            layout.extend(["mirror", targets[i], targets[i + 1]])
        return layout

    return ["raidz", *targets]
