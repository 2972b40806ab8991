"""Tests for structured sync errors."""

import logging

from src.entsync.sync import SyncError, SyncErrorType
from src.entsync.sync.domain.errors import SyncErrorCollection
from tests.sync.blog_app import User


def missing(user_id, level=logging.ERROR):
    return SyncError(SyncErrorType.ENTITY_MISSING, "User not found: %s", values=[user_id], level=level)


class TestSyncError:
    """Tests for SyncError."""

    def test_code(self):
        assert missing(1).code == "E-0001"
        assert missing(1, logging.WARNING).code == "W-0001"

    def test_entity_defaults(self):
        error = SyncError(SyncErrorType.ENTITY_NOT_VALID, "Invalid: %s", entity=User(id=3))
        assert error.entity_name == "/tests/sync/blog_app/User/3"
        assert error.values == ["/tests/sync/blog_app/User/3"]
        assert error.formatted_message == "Invalid: /tests/sync/blog_app/User/3"

    def test_bad_format_falls_back_to_message(self):
        error = SyncError(SyncErrorType.OPERATION_FAILED, "%s and %s", values=[1])
        assert error.formatted_message == "%s and %s"

    def test_equality_ignores_count(self):
        assert missing(1) == missing(1).increment()
        assert missing(1) != missing(2)


class TestSyncErrorCollection:
    """Tests for SyncErrorCollection."""

    def test_counts(self):
        errors = SyncErrorCollection([missing(1), missing(2, logging.WARNING), missing(3, logging.INFO)])
        assert errors.error_count == 1
        assert errors.warning_count == 1
        assert len(errors) == 3

    def test_deduplicate(self):
        errors = SyncErrorCollection()
        first = errors.append(missing(1))
        again = errors.append(missing(1), deduplicate=True)

        assert again is first
        assert first.count == 2
        assert len(errors) == 1

    def test_summary_groups_by_code_and_message(self):
        errors = SyncErrorCollection([missing(1), missing(2)])
        errors.append(missing(1), deduplicate=True)

        summary = errors.get_summary()

        assert len(summary) == 1
        assert summary[0]["code"] == "E-0001"
        assert summary[0]["title"] == "ENTITY_MISSING"
        assert summary[0]["meta"] == {"level": "ERROR", "count": 2, "seen": 3, "values": [1, 2]}

    def test_report(self, caplog):
        with caplog.at_level(logging.INFO, logger="src.entsync.sync.domain.errors"):
            SyncErrorCollection().report("All good")
            SyncErrorCollection([missing(1)]).report()

        assert "All good" in caplog.text
        assert "1 sync error(s) recorded" in caplog.text
        assert "{1} ENTITY_MISSING [ERROR]" in caplog.text
