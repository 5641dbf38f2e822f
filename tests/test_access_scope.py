from __future__ import annotations

from unittest import TestCase
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from genbill.core.actors import Actor, Role
from genbill.core.errors import AccessDeniedError, PersistenceError, ValidationError
from genbill.services.access_scope import (
    AccessScopeService,
    BillRef,
    GeneratorRef,
    ZoneRef,
    build_scope,
    can_write,
    ensure_admin,
)
from tests.sqlite_support import (
    memory_session_factory,
    seed_generator,
    seed_zone,
)

ZONES = [
    ZoneRef(id=1, client_id=300, assigned_operator_id=200),
    ZoneRef(id=2, client_id=301, assigned_operator_id=None),
    ZoneRef(id=3, client_id=300, assigned_operator_id=201),
]
GENERATORS = [
    GeneratorRef(id=10, zone_id=1),
    GeneratorRef(id=11, zone_id=2),
    GeneratorRef(id=12, zone_id=3),
    GeneratorRef(id=13, zone_id=None),
]
BILLS = [
    BillRef(id=100, zone_id=1, client_id=300),
    BillRef(id=101, zone_id=2, client_id=301),
    BillRef(id=102, zone_id=3, client_id=300),
]


class BuildScopeTests(TestCase):
    def test_administrator_sees_everything(self) -> None:
        scope = build_scope(
            Actor(id=1, role=Role.ADMINISTRATOR), zones=ZONES, generators=GENERATORS, bills=BILLS
        )
        self.assertTrue(scope.unrestricted)
        self.assertIsNone(scope.zone_filter())
        self.assertTrue(scope.allows_generator(13))

    def test_operator_is_limited_to_assigned_zone(self) -> None:
        scope = build_scope(
            Actor(id=200, role=Role.OPERATOR), zones=ZONES, generators=GENERATORS, bills=BILLS
        )
        self.assertEqual(scope.zone_filter(), frozenset({1}))
        self.assertEqual(scope.generator_filter(), frozenset({10}))
        self.assertEqual(scope.bill_filter(), frozenset({100}))

    def test_operator_without_zone_sees_nothing(self) -> None:
        scope = build_scope(
            Actor(id=999, role=Role.OPERATOR), zones=ZONES, generators=GENERATORS, bills=BILLS
        )
        self.assertTrue(scope.is_empty)
        self.assertFalse(scope.allows_zone(1))
        self.assertEqual(scope.generator_filter(), frozenset())

    def test_client_sees_own_zones_and_bills(self) -> None:
        scope = build_scope(
            Actor(id=300, role=Role.CLIENT), zones=ZONES, generators=GENERATORS, bills=BILLS
        )
        self.assertEqual(scope.zone_filter(), frozenset({1, 3}))
        self.assertEqual(scope.generator_filter(), frozenset({10, 12}))
        self.assertEqual(scope.bill_filter(), frozenset({100, 102}))


class WritePermissionTests(TestCase):
    def test_operator_writes_only_in_assigned_zone(self) -> None:
        operator = Actor(id=200, role=Role.OPERATOR)
        self.assertTrue(can_write(operator, ZONES[0]))
        self.assertFalse(can_write(operator, ZONES[2]))
        self.assertFalse(can_write(operator, None))

    def test_clients_are_read_only(self) -> None:
        self.assertFalse(can_write(Actor(id=300, role=Role.CLIENT), ZONES[0]))

    def test_administrator_writes_anywhere(self) -> None:
        self.assertTrue(can_write(Actor(id=1, role=Role.ADMINISTRATOR), None))

    def test_ensure_admin(self) -> None:
        with self.assertRaises(AccessDeniedError):
            ensure_admin(Actor(id=200, role=Role.OPERATOR), action="create bills")


class AccessScopeServiceTests(TestCase):
    def setUp(self) -> None:
        self.factory = memory_session_factory()
        self.zone_a = seed_zone(self.factory, name="A", client_id=300, operator_id=200)
        self.zone_b = seed_zone(self.factory, name="B", client_id=301, operator_id=None)
        self.gen_a = seed_generator(self.factory, zone_id=self.zone_a, name="A1")
        self.gen_b = seed_generator(self.factory, zone_id=self.zone_b, name="B1")
        self.service = AccessScopeService(session_factory=self.factory)

    def test_operator_listing_is_scoped(self) -> None:
        operator = Actor(id=200, role=Role.OPERATOR)
        generators = self.service.list_scoped(operator, "generators")
        self.assertEqual([g.id for g in generators], [self.gen_a])

    def test_operator_without_zone_lists_nothing(self) -> None:
        operator = Actor(id=555, role=Role.OPERATOR)
        self.assertEqual(self.service.list_scoped(operator, "zones"), [])
        self.assertEqual(self.service.list_scoped(operator, "generators"), [])

    def test_client_scope_resolved_from_database(self) -> None:
        scope = self.service.scope_for(Actor(id=301, role=Role.CLIENT))
        self.assertEqual(scope.zone_filter(), frozenset({self.zone_b}))
        self.assertEqual(scope.generator_filter(), frozenset({self.gen_b}))

    def test_unknown_collection_is_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            self.service.list_scoped(Actor(id=1, role=Role.ADMINISTRATOR), "invoices")

    def test_store_failure_is_persistence_error(self) -> None:
        store_down = OperationalError("SELECT", {}, Exception("connection refused"))
        operator = Actor(id=200, role=Role.OPERATOR)
        with patch("genbill.services.access_scope.resolve_scope", side_effect=store_down):
            with self.assertRaises(PersistenceError):
                self.service.list_scoped(operator, "generators")
            with self.assertRaises(PersistenceError):
                self.service.scope_for(operator)
