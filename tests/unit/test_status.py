"""Unit tests for the per-component status ledger."""

from opensearch_operator.models.cluster import ClusterStatus, ComponentStatus
from opensearch_operator.status import UPGRADED, UPGRADER, UPGRADING, VALIDATION, StatusLedger


def entry(component, description, status):
    return ComponentStatus(component=component, description=description, status=status)


def test_set_adds_and_replaces_in_place():
    ledger = StatusLedger()
    ledger.set(UPGRADER, "nodes", UPGRADING)
    ledger.set(UPGRADER, "client", UPGRADING)
    ledger.set(UPGRADER, "nodes", UPGRADED)

    assert len(ledger) == 2
    assert [(e.description, e.status) for e in ledger] == [
        ("nodes", UPGRADED),
        ("client", UPGRADING),
    ]


def test_duplicate_input_keeps_first_position_and_last_value():
    ledger = StatusLedger(
        [
            entry(UPGRADER, "nodes", UPGRADING),
            entry(UPGRADER, "client", UPGRADING),
            entry(UPGRADER, "nodes", UPGRADED),
        ]
    )
    assert [e.description for e in ledger] == ["nodes", "client"]
    assert ledger.status_of(UPGRADER, "nodes") == UPGRADED


def test_status_of_missing_entry():
    assert StatusLedger().status_of(UPGRADER, "nodes") is None


def test_contains():
    ledger = StatusLedger([entry(UPGRADER, "nodes", UPGRADING)])
    assert (UPGRADER, "nodes") in ledger
    assert (UPGRADER, "client") not in ledger


def test_replace_only_when_current_matches():
    ledger = StatusLedger([entry(UPGRADER, "nodes", UPGRADING)])

    assert not ledger.replace(entry(UPGRADER, "nodes", UPGRADED), entry(UPGRADER, "nodes", "x"))
    assert ledger.status_of(UPGRADER, "nodes") == UPGRADING

    assert ledger.replace(entry(UPGRADER, "nodes", UPGRADING), entry(UPGRADER, "nodes", UPGRADED))
    assert ledger.status_of(UPGRADER, "nodes") == UPGRADED


def test_replace_with_new_key_keeps_position():
    ledger = StatusLedger(
        [
            entry(UPGRADER, "a", UPGRADING),
            entry(UPGRADER, "b", UPGRADING),
            entry(UPGRADER, "c", UPGRADING),
        ]
    )
    assert ledger.replace(entry(UPGRADER, "b", UPGRADING), entry(UPGRADER, "c", UPGRADED))
    assert [(e.description, e.status) for e in ledger] == [("a", UPGRADING), ("c", UPGRADED)]


def test_remove():
    ledger = StatusLedger([entry(UPGRADER, "nodes", UPGRADING)])
    removed = ledger.remove(UPGRADER, "nodes")
    assert removed.status == UPGRADING
    assert len(ledger) == 0
    assert ledger.remove(UPGRADER, "nodes") is None


def test_filter():
    ledger = StatusLedger(
        [
            entry(UPGRADER, "nodes", UPGRADED),
            entry(UPGRADER, "client", UPGRADING),
            entry(VALIDATION, "bad", "InvalidSpec"),
        ]
    )
    assert [e.description for e in ledger.filter(UPGRADER)] == ["nodes", "client"]
    assert [e.description for e in ledger.filter(status=UPGRADED)] == ["nodes"]


def test_prune_component():
    ledger = StatusLedger(
        [
            entry(UPGRADER, "nodes", UPGRADED),
            entry(VALIDATION, "bad", "InvalidSpec"),
            entry(UPGRADER, "client", UPGRADING),
        ]
    )
    assert ledger.prune(UPGRADER) == 2
    assert [e.component for e in ledger] == [VALIDATION]


def test_prune_selected_descriptions():
    ledger = StatusLedger(
        [entry(UPGRADER, "nodes", UPGRADED), entry(UPGRADER, "client", UPGRADED)]
    )
    assert ledger.prune(UPGRADER, ["client", "missing"]) == 1
    assert [e.description for e in ledger] == ["nodes"]


def test_write_to_status():
    status = ClusterStatus()
    ledger = StatusLedger.from_status(status)
    ledger.set(UPGRADER, "nodes", UPGRADING)
    ledger.write_to(status)
    assert status.components_status == [entry(UPGRADER, "nodes", UPGRADING)]


def test_iteration_is_a_snapshot():
    ledger = StatusLedger([entry(UPGRADER, "nodes", UPGRADED)])
    for item in ledger:
        ledger.remove(item.component, item.description)
    assert len(ledger) == 0
