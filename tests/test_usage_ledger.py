from __future__ import annotations

from decimal import Decimal
from unittest import TestCase
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from genbill.core.actors import Actor, Role
from genbill.core.errors import AccessDeniedError, NotFoundError, PersistenceError, ValidationError
from genbill.services.usage_ledger import UsageLedgerService
from tests.sqlite_support import (
    ADMIN,
    as_utc,
    memory_session_factory,
    seed_entry,
    seed_generator,
    seed_zone,
    utc,
)

OPERATOR = Actor(id=200, role=Role.OPERATOR)
CLIENT = Actor(id=301, role=Role.CLIENT)


class UsageLedgerServiceTests(TestCase):
    def setUp(self) -> None:
        self.factory = memory_session_factory()
        self.zone_a = seed_zone(self.factory, name="A", client_id=300, operator_id=OPERATOR.id)
        self.zone_b = seed_zone(self.factory, name="B", client_id=CLIENT.id)
        self.gen_a = seed_generator(self.factory, zone_id=self.zone_a, name="A1")
        self.gen_b = seed_generator(self.factory, zone_id=self.zone_b, name="B1")
        self.entry_a1 = seed_entry(
            self.factory, generator_id=self.gen_a, zone_id=self.zone_a, timestamp=utc(2026, 1, 1), fuel="5"
        )
        self.entry_a2 = seed_entry(
            self.factory,
            generator_id=self.gen_a,
            zone_id=self.zone_a,
            timestamp=utc(2026, 1, 3),
            action="start",
        )
        self.entry_b1 = seed_entry(
            self.factory, generator_id=self.gen_b, zone_id=self.zone_b, timestamp=utc(2026, 1, 2), fuel="7"
        )
        self.service = UsageLedgerService(session_factory=self.factory)

    def test_listing_is_scoped_and_newest_first(self) -> None:
        self.assertEqual(
            [e.id for e in self.service.list_entries(ADMIN)],
            [self.entry_a2, self.entry_b1, self.entry_a1],
        )
        self.assertEqual(
            [e.id for e in self.service.list_entries(OPERATOR)],
            [self.entry_a2, self.entry_a1],
        )
        self.assertEqual([e.id for e in self.service.list_entries(CLIENT)], [self.entry_b1])

    def test_listing_filters(self) -> None:
        self.assertEqual(
            [e.id for e in self.service.list_entries(ADMIN, action="start")],
            [self.entry_a2],
        )
        self.assertEqual(
            [e.id for e in self.service.list_entries(ADMIN, start=utc(2026, 1, 2), end=utc(2026, 1, 3))],
            [self.entry_a2, self.entry_b1],
        )
        with self.assertRaises(ValidationError):
            self.service.list_entries(ADMIN, action="explode")
        with self.assertRaises(ValidationError):
            self.service.list_entries(ADMIN, start=utc(2026, 1, 3), end=utc(2026, 1, 1))

    def test_window_is_inclusive(self) -> None:
        entries = self.service.entries_in_window(self.gen_a, utc(2026, 1, 1), utc(2026, 1, 3))
        self.assertEqual(sorted(e.id for e in entries), [self.entry_a1, self.entry_a2])

    def test_administrator_correction_is_stamped(self) -> None:
        entry = self.service.correct_entry(
            self.entry_a1,
            ADMIN,
            {"fuel_consumed_liters": Decimal("6.5"), "timestamp": utc(2026, 1, 1, 6)},
        )
        self.assertEqual(entry.fuel_consumed_liters, Decimal("6.500"))
        self.assertEqual(as_utc(entry.timestamp), utc(2026, 1, 1, 6))
        self.assertEqual(entry.corrected_by, ADMIN.id)
        self.assertIsNotNone(entry.corrected_at)

    def test_correction_validation(self) -> None:
        with self.assertRaises(AccessDeniedError):
            self.service.correct_entry(self.entry_a1, OPERATOR, {"remarks": "x"})
        with self.assertRaises(ValidationError):
            self.service.correct_entry(self.entry_a1, ADMIN, {"action": "fault"})
        with self.assertRaises(ValidationError):
            self.service.correct_entry(self.entry_a1, ADMIN, {"runtime_hours": Decimal("-1")})
        with self.assertRaises(ValidationError):
            self.service.correct_entry(self.entry_a1, ADMIN, {})
        with self.assertRaises(NotFoundError):
            self.service.correct_entry(9999, ADMIN, {"remarks": "x"})

    def test_delete_entry(self) -> None:
        with self.assertRaises(AccessDeniedError):
            self.service.delete_entry(self.entry_b1, CLIENT)
        self.service.delete_entry(self.entry_b1, ADMIN)
        with self.assertRaises(NotFoundError):
            self.service.delete_entry(self.entry_b1, ADMIN)
        self.assertEqual([e.id for e in self.service.list_entries(CLIENT)], [])

    def test_store_failure_on_reads_is_persistence_error(self) -> None:
        store_down = OperationalError("SELECT", {}, Exception("connection refused"))
        with patch("genbill.services.usage_ledger.resolve_scope", side_effect=store_down):
            with self.assertRaises(PersistenceError):
                self.service.list_entries(OPERATOR)
        with patch("genbill.services.usage_ledger.get_usage_log_entry", side_effect=store_down):
            with self.assertRaises(PersistenceError):
                self.service.correct_entry(self.entry_a1, ADMIN, {"remarks": "x"})
        with patch("genbill.services.usage_ledger.list_entries_in_window", side_effect=store_down):
            with self.assertRaises(PersistenceError):
                self.service.entries_in_window(self.gen_a, utc(2026, 1, 1), utc(2026, 1, 3))
