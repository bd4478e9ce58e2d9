"""Per-component status ledger.

The ledger is the orchestrator's working memory. Entries are keyed by
``(component, description)``; setting an entry whose key already exists
replaces it where it stands, so ordering is preserved and duplicates cannot
appear. Upgrade entries move through::

    (no entry) -> Upgrading -> Upgraded -> (pruned when the upgrade completes)

An ``UpgradeTarget`` entry, described by a version, names the version the
``Upgrader`` entries were recorded for.
"""

from collections.abc import Iterable, Iterator

from opensearch_operator.models.cluster import ClusterStatus, ComponentStatus

UPGRADER = "Upgrader"
UPGRADING = "Upgrading"
UPGRADED = "Upgraded"

UPGRADE_TARGET = "UpgradeTarget"
TARGETED = "Targeted"

VALIDATION = "Validation"
INVALID_SPEC = "InvalidSpec"


class StatusLedger:
    """Ordered mapping of ``(component, description)`` to status entries."""

    def __init__(self, entries: Iterable[ComponentStatus] = ()):
        self._entries: dict[tuple[str, str], ComponentStatus] = {}
        for entry in entries:
            # A repeated key keeps its first position and its last value
            self._entries[(entry.component, entry.description)] = entry

    @classmethod
    def from_status(cls, status: ClusterStatus) -> "StatusLedger":
        return cls(status.components_status)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ComponentStatus]:
        return iter(list(self._entries.values()))

    def __contains__(self, key: tuple[str, str]) -> bool:
        return key in self._entries

    def get(self, component: str, description: str) -> ComponentStatus | None:
        return self._entries.get((component, description))

    def status_of(self, component: str, description: str) -> str | None:
        entry = self.get(component, description)
        return entry.status if entry else None

    def set(self, component: str, description: str, status: str) -> ComponentStatus:
        """Record a status, replacing any entry with the same key in place."""
        entry = ComponentStatus(component=component, description=description, status=status)
        self._entries[(component, description)] = entry
        return entry

    def replace(self, current: ComponentStatus, new: ComponentStatus) -> bool:
        """Swap ``current`` for ``new`` at the same position.

        Only replaces when the stored entry equals ``current``, so a stale
        transition cannot overwrite one that has already moved on.

        Returns:
            True if the entry was replaced
        """
        key = (current.component, current.description)
        if self._entries.get(key) != current:
            return False
        new_key = (new.component, new.description)
        if new_key == key:
            self._entries[key] = new
            return True
        self._entries.pop(new_key, None)
        self._entries = dict(
            (new_key, new) if k == key else (k, v) for k, v in self._entries.items()
        )
        return True

    def remove(self, component: str, description: str) -> ComponentStatus | None:
        return self._entries.pop((component, description), None)

    def filter(self, component: str | None = None, status: str | None = None) -> list[ComponentStatus]:
        return [
            entry
            for entry in self._entries.values()
            if (component is None or entry.component == component)
            and (status is None or entry.status == status)
        ]

    def prune(self, component: str, descriptions: Iterable[str] | None = None) -> int:
        """Drop entries for ``component``, optionally only some descriptions.

        Returns:
            Number of entries removed
        """
        wanted = set(descriptions) if descriptions is not None else None
        doomed = [
            key
            for key in self._entries
            if key[0] == component and (wanted is None or key[1] in wanted)
        ]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def to_list(self) -> list[ComponentStatus]:
        return list(self._entries.values())

    def write_to(self, status: ClusterStatus) -> None:
        status.components_status = self.to_list()
