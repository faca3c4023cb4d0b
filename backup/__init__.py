from backup.snapshot_store import SnapshotStore, compute_checksum, serialize

__all__ = ["SnapshotStore", "compute_checksum", "serialize"]
