"""
Block device discovery and partitioning.
"""

from .catalog import BlockDevice, DeviceCatalog, PersistentIdentifier, select_identifier
from .partition import PartitionConfig, PartitionInfo, PartitionTool, SgdiskPartitionTool

__all__ = [
    "BlockDevice",
    "DeviceCatalog",
    "PartitionConfig",
    "PartitionInfo",
    "PartitionTool",
    "PersistentIdentifier",
    "SgdiskPartitionTool",
    "select_identifier",
]
