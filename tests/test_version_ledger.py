"""Deliverable version ledger tests — sprintdesk.services.version_ledger."""

import pytest

from sprintdesk.core.exceptions import (
    AccessDeniedError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from sprintdesk.models import db
from sprintdesk.models.sprint import SprintDeliverableVersion, parse_version
from sprintdesk.services import sprint_service, version_ledger


@pytest.fixture()
def line(member, catalog, pricing):
    sprint = sprint_service.create_sprint(member, {}, pricing)
    row = sprint_service.add_deliverable(sprint.id, catalog["wordmark"].id, member,
                                         config=pricing)
    sprint_service.update_deliverable(sprint.id, row.id,
                                      {"content": "Draft A", "notes": "first pass",
                                       "type_data": {"colors": ["#000"]}},
                                      member, config=pricing)
    return row


@pytest.mark.parametrize("value,expected", [
    ("1.0", (1, 0)),
    ("1.10", (1, 10)),
    (" 2.3 ", (2, 3)),
    ("1", None),
    ("1.2.3", None),
    ("v1.0", None),
    ("", None),
    (1.0, None),
    ("2147483647.0", (2147483647, 0)),
    ("2147483648.0", None),
    ("1.99999999999999999999", None),
])
def test_parse_version(value, expected):
    assert parse_version(value) == expected


def test_first_version_snapshots_content(line, member):
    version = version_ledger.create_version(line.id, "1.0", member)
    assert version.version_number == "1.0"
    assert version.content == "Draft A"
    assert version.notes == "first pass"
    assert version.type_data == {"colors": ["#000"]}
    assert version.saved_by == member.email
    assert line.current_version == "1.0"


def test_versions_strictly_increasing(line, member):
    version_ledger.create_version(line.id, "1.5", member)
    with pytest.raises(ValidationError):
        version_ledger.create_version(line.id, "1.0", member)
    version_ledger.create_version(line.id, "2.0", member)
    assert line.current_version == "2.0"


def test_duplicate_then_lower_then_higher(line, member):
    version_ledger.create_version(line.id, "1.0", member)
    with pytest.raises(ConflictError):
        version_ledger.create_version(line.id, "1.0", member)
    with pytest.raises(ValidationError):
        version_ledger.create_version(line.id, "0.9", member)
    version_ledger.create_version(line.id, "1.1", member)
    assert line.current_version == "1.1"


def test_numeric_not_lexicographic_ordering(line, member):
    version_ledger.create_version(line.id, "1.9", member)
    version_ledger.create_version(line.id, "1.10", member)
    numbers = [v.version_number for v in version_ledger.list_versions(line.id, member)]
    assert numbers == ["1.10", "1.9"]


def test_equal_canonical_form_is_duplicate(line, member):
    version_ledger.create_version(line.id, "1.01", member)
    with pytest.raises(ConflictError):
        version_ledger.create_version(line.id, "1.1", member)


@pytest.mark.parametrize("bad", [
    "1", "one.two", "", None, "1.0-beta", "99999999999999999999.0", "3000000000.0",
])
def test_malformed_version_rejected(line, member, bad):
    with pytest.raises(ValidationError):
        version_ledger.create_version(line.id, bad, member)
    assert SprintDeliverableVersion.query.count() == 0


def test_snapshot_unaffected_by_later_edits(line, member, pricing):
    version_ledger.create_version(line.id, "1.0", member)
    sprint_service.update_deliverable(line.sprint_draft_id, line.id, {"content": "Draft B"},
                                      member, config=pricing)
    [snapshot] = version_ledger.list_versions(line.id, member)
    assert snapshot.content == "Draft A"


def test_versions_are_immutable(line, member):
    version = version_ledger.create_version(line.id, "1.0", member)
    version.content = "tampered"
    with pytest.raises(ValueError):
        db.session.flush()
    db.session.rollback()

    version = db.session.get(SprintDeliverableVersion, version.id)
    db.session.delete(version)
    with pytest.raises(ValueError):
        db.session.flush()
    db.session.rollback()


def test_outsider_cannot_version(line, outsider):
    with pytest.raises(AccessDeniedError):
        version_ledger.create_version(line.id, "1.0", outsider)


def test_line_must_belong_to_sprint(line, member):
    with pytest.raises(NotFoundError):
        version_ledger.list_versions(line.id, member, sprint_id=line.sprint_draft_id + 1)


def test_version_is_logged(line, member):
    version_ledger.create_version(line.id, "1.0", member)
    entry = sprint_service.list_changelog(line.sprint_draft_id, member)[0]
    assert entry.action == "deliverable.version"
    assert entry.details["version"] == "1.0"
