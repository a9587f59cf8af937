from abc import ABC, abstractmethod
from typing import Dict, Tuple
from durastore.errors import VersionConflictError
from durastore.models import Snapshot

class SnapshotValidator(ABC):
    """
    Hook run by the store before a snapshot is accepted.
    The store performs no ordering checks unless one is installed.
    """

    @abstractmethod
    def check(self, snapshot: Snapshot) -> None:
        """Raise a DurableStoreError to reject the snapshot."""
        pass

    def accept(self, snapshot: Snapshot) -> None:
        """Called once the snapshot has been handed to the coalescer."""
        pass


class MonotonicVersionValidator(SnapshotValidator):
    """
    Rejects a snapshot older than the last one accepted in this process for
    the same identifier. Equal versions pass, so re-writing a snapshot is fine.

    Only writes seen by this instance are tracked; another process writing the
    same identifier is invisible to it.
    """

    def __init__(self, check_timestamp: bool = False):
        self.check_timestamp = check_timestamp
        self._accepted: Dict[str, Tuple[int, int]] = {}

    def check(self, snapshot: Snapshot) -> None:
        last = self._accepted.get(snapshot.persistence_id)
        if last is None:
            return
        last_version, last_timestamp = last
        if snapshot.version < last_version:
            raise VersionConflictError(
                f"version {snapshot.version} is older than accepted version {last_version} "
                f"for persistence_id={snapshot.persistence_id}",
                persistence_id=snapshot.persistence_id,
                operation="write_state",
            )
        if self.check_timestamp and snapshot.timestamp < last_timestamp:
            raise VersionConflictError(
                f"timestamp {snapshot.timestamp} is older than accepted timestamp {last_timestamp} "
                f"for persistence_id={snapshot.persistence_id}",
                persistence_id=snapshot.persistence_id,
                operation="write_state",
            )

    def accept(self, snapshot: Snapshot) -> None:
        self._accepted[snapshot.persistence_id] = (snapshot.version, snapshot.timestamp)
