"""GPT layout replication engine.

This package clones the partition layout of a source disk onto a destination
disk, optionally grows one partition into the new free space, recreates
empty filesystems of the matching family and rewrites their identifiers.

Main Functions:
    - replicate_disk(): Run every phase and return a ReplicationSummary
    - read_layout(): Snapshot a device's size and partition map
    - plan_layout(): Compute the destination partition map (pure)
    - apply_plan(): Write a plan to the destination table
    - replicate_filesystems(): Recreate filesystems per partition
    - rewrite_identities(): Assign fresh UUIDs, labels and partition names
"""

from .filesystems import build_filesystem_mapping, replicate_filesystems
from .identity import rewrite_identities
from .inspector import read_layout
from .orchestrator import ReplicationSummary, replicate_disk
from .planner import plan_layout, select_target_partition, validate_plan
from .table_writer import TableWriteResult, apply_plan, diff_table, zap_table

__all__ = [
    # Main operations
    "replicate_disk",
    "read_layout",
    "plan_layout",
    "apply_plan",
    "zap_table",
    "build_filesystem_mapping",
    "replicate_filesystems",
    "rewrite_identities",
    # Helpers
    "select_target_partition",
    "validate_plan",
    "diff_table",
    # Results
    "ReplicationSummary",
    "TableWriteResult",
]
