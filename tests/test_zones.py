from __future__ import annotations

from decimal import Decimal
from types import SimpleNamespace
from unittest import TestCase
from unittest.mock import patch

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from genbill.core.actors import Actor, Role
from genbill.core.errors import (
    AccessDeniedError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from genbill.db.models import Generator, UsageLogEntry, Zone
from genbill.services.zones import ZoneService, parse_generator_mix, plan_generator_mix
from tests.sqlite_support import (
    ADMIN,
    memory_session_factory,
    seed_entry,
    seed_generator,
    seed_zone,
    utc,
)

OPERATOR = Actor(id=200, role=Role.OPERATOR)


def _gen(gid: int, kva: str, *, status: str = "offline", name: str | None = None) -> SimpleNamespace:
    return SimpleNamespace(id=gid, kva=Decimal(kva), status=status, name=name or f"{kva}kVA #{gid}")


class GeneratorMixPlanTests(TestCase):
    def test_parse_generator_mix(self) -> None:
        self.assertEqual(parse_generator_mix({"100": 2, 50: 1}), {Decimal("100"): 2, Decimal("50"): 1})
        for bad in ({"abc": 1}, {"0": 1}, {"100": -1}, {"100": 1.5}, {"100": True}):
            with self.subTest(mix=bad):
                with self.assertRaises(ValidationError):
                    parse_generator_mix(bad)

    def test_additions_continue_numbering(self) -> None:
        plan = plan_generator_mix([_gen(1, "100", name="100kVA #3")], {Decimal("100"): 3}, set())
        self.assertEqual([p.name for p in plan.additions], ["100kVA #4", "100kVA #5"])

    def test_surplus_prefers_idle_generators_without_history(self) -> None:
        generators = [_gen(1, "100"), _gen(2, "100"), _gen(3, "100")]
        plan = plan_generator_mix(generators, {Decimal("100"): 1}, ids_with_entries={3})
        self.assertEqual([g.id for g in plan.deletions], [2, 1])
        self.assertEqual(plan.detachments, [])

    def test_generators_with_history_are_detached(self) -> None:
        plan = plan_generator_mix([_gen(1, "60")], {}, ids_with_entries={1})
        self.assertEqual([g.id for g in plan.detachments], [1])
        self.assertEqual(plan.deletions, [])

    def test_removing_a_running_generator_is_a_conflict(self) -> None:
        generators = [_gen(1, "100", status="running"), _gen(2, "100")]
        plan = plan_generator_mix(generators, {Decimal("100"): 1}, set())
        self.assertEqual([g.id for g in plan.deletions], [2])
        with self.assertRaises(ConflictError):
            plan_generator_mix(generators, {}, set())

    def test_unchanged_mix_is_noop(self) -> None:
        plan = plan_generator_mix([_gen(1, "100.00")], {Decimal("100"): 1}, set())
        self.assertTrue(plan.is_noop)


class ZoneServiceTests(TestCase):
    def setUp(self) -> None:
        self.factory = memory_session_factory()
        self.service = ZoneService(session_factory=self.factory)

    def _generators(self, zone_id: int) -> list[Generator]:
        with self.factory() as db:
            return list(db.scalars(select(Generator).where(Generator.zone_id == zone_id).order_by(Generator.id)))

    def test_create_zone_with_mix(self) -> None:
        zone = self.service.create_zone(
            ADMIN,
            name=" North ",
            client_id=300,
            operator_id=OPERATOR.id,
            generator_mix={"100": 2, "50": 1},
        )
        self.assertEqual(zone.name, "North")
        self.assertEqual(zone.assigned_operator_id, OPERATOR.id)
        names = sorted(g.name for g in self._generators(zone.id))
        self.assertEqual(names, ["100kVA #1", "100kVA #2", "50kVA #1"])

    def test_create_zone_requires_admin_and_name(self) -> None:
        with self.assertRaises(AccessDeniedError):
            self.service.create_zone(OPERATOR, name="x")
        with self.assertRaises(ValidationError):
            self.service.create_zone(ADMIN, name="  ")

    def test_assigning_operator_releases_previous_zone(self) -> None:
        first = seed_zone(self.factory, name="First", operator_id=OPERATOR.id)
        second = seed_zone(self.factory, name="Second")

        zone = self.service.assign_operator(second, ADMIN, OPERATOR.id)

        self.assertEqual(zone.assigned_operator_id, OPERATOR.id)
        with self.factory() as db:
            self.assertIsNone(db.get(Zone, first).assigned_operator_id)
        self.assertEqual([z.id for z in self.service.list_zones(OPERATOR)], [second])

    def test_update_mix_keeps_generators_with_history(self) -> None:
        zone_id = seed_zone(self.factory)
        with_history = seed_generator(self.factory, zone_id=zone_id, name="100kVA #1")
        seed_generator(self.factory, zone_id=zone_id, name="100kVA #2")
        seed_generator(self.factory, zone_id=zone_id, name="50kVA #1", kva="50")
        seed_entry(self.factory, generator_id=with_history, zone_id=zone_id, timestamp=utc(2026, 1, 1))
        lone = seed_generator(self.factory, zone_id=zone_id, name="60kVA #1", kva="60")
        seed_entry(self.factory, generator_id=lone, zone_id=zone_id, timestamp=utc(2026, 1, 2))

        self.service.update_zone(zone_id, ADMIN, {"generator_mix": {"100": 1}})

        self.assertEqual([g.id for g in self._generators(zone_id)], [with_history])
        with self.factory() as db:
            detached = db.get(Generator, lone)
            self.assertIsNotNone(detached)
            self.assertIsNone(detached.zone_id)

    def test_update_mix_with_running_surplus_changes_nothing(self) -> None:
        zone_id = seed_zone(self.factory)
        running = seed_generator(self.factory, zone_id=zone_id, status="running")
        with self.assertRaises(ConflictError):
            self.service.update_zone(zone_id, ADMIN, {"name": "Renamed", "generator_mix": {}})
        self.assertEqual([g.id for g in self._generators(zone_id)], [running])
        self.assertEqual(self.service.get_zone(zone_id, ADMIN).name, "Zone A")

    def test_update_rejects_unknown_fields(self) -> None:
        zone_id = seed_zone(self.factory)
        with self.assertRaises(ValidationError):
            self.service.update_zone(zone_id, ADMIN, {"colour": "red"})
        with self.assertRaises(NotFoundError):
            self.service.update_zone(9999, ADMIN, {"name": "x"})

    def test_delete_zone(self) -> None:
        busy = seed_zone(self.factory, name="Busy")
        seed_generator(self.factory, zone_id=busy)
        with self.assertRaises(ConflictError):
            self.service.delete_zone(busy, ADMIN)
        empty = seed_zone(self.factory, name="Empty")
        self.service.delete_zone(empty, ADMIN)
        with self.assertRaises(NotFoundError):
            self.service.get_zone(empty, ADMIN)

    def test_scoped_zone_reads(self) -> None:
        mine = seed_zone(self.factory, name="Mine", operator_id=OPERATOR.id)
        other = seed_zone(self.factory, name="Other")
        self.assertEqual(self.service.get_zone(mine, OPERATOR).id, mine)
        with self.assertRaises(NotFoundError):
            self.service.get_zone(other, OPERATOR)
        self.assertEqual(len(self.service.list_zones(ADMIN)), 2)

    def test_detaching_a_faulted_generator_records_a_stop(self) -> None:
        zone_id = seed_zone(self.factory)
        faulted = seed_generator(self.factory, zone_id=zone_id, name="60kVA #1", kva="60", status="fault")
        seed_entry(self.factory, generator_id=faulted, zone_id=zone_id, timestamp=utc(2026, 1, 2), action="fault")

        self.service.update_zone(zone_id, ADMIN, {"generator_mix": {}})

        with self.factory() as db:
            generator = db.get(Generator, faulted)
            self.assertIsNone(generator.zone_id)
            self.assertEqual(generator.status, "offline")
            actions = [
                (entry.action, entry.operator_id)
                for entry in db.scalars(
                    select(UsageLogEntry)
                    .where(UsageLogEntry.generator_id == faulted)
                    .order_by(UsageLogEntry.id)
                )
            ]
        self.assertEqual(actions[-1], ("stop", ADMIN.id))
        self.assertEqual(len(actions), 2)

    def test_detaching_an_offline_generator_adds_no_entry(self) -> None:
        zone_id = seed_zone(self.factory)
        idle = seed_generator(self.factory, zone_id=zone_id, name="60kVA #1", kva="60")
        seed_entry(self.factory, generator_id=idle, zone_id=zone_id, timestamp=utc(2026, 1, 2))

        self.service.update_zone(zone_id, ADMIN, {"generator_mix": {}})

        with self.factory() as db:
            count = len(db.scalars(select(UsageLogEntry).where(UsageLogEntry.generator_id == idle)).all())
        self.assertEqual(count, 1)

    def test_store_failure_on_reads_is_persistence_error(self) -> None:
        zone_id = seed_zone(self.factory)
        store_down = OperationalError("SELECT", {}, Exception("connection refused"))
        with patch("genbill.services.zones.get_zone", side_effect=store_down):
            with self.assertRaises(PersistenceError):
                self.service.get_zone(zone_id, ADMIN)
            with self.assertRaises(PersistenceError):
                self.service.delete_zone(zone_id, ADMIN)
        with patch("genbill.services.zones.resolve_scope", side_effect=store_down):
            with self.assertRaises(PersistenceError):
                self.service.list_zones(OPERATOR)
