# =============================================================================
# tests/unit/test_scoping.py
# Unit Tests for the scoped-view filter
# =============================================================================

import copy

import pandas as pd
import pytest

from clinic_core.auth.permissions import Role
from clinic_core.data.scoping import (
    DOCTOR_TABLES,
    MANAGER_PASSTHROUGH,
    STAFF_PASSTHROUGH,
    STORE_SCOPED,
    _POLICIES,
    is_visible,
    scope,
)


def ids(records):
    return sorted(r["id"] for r in records)


class TestNoSession:
    def test_everything_empty(self, sample_dataset):
        view = scope(sample_dataset, None)
        assert all(view.get(table) == () for table in sample_dataset)
        assert view.role is None
        assert not view.unrestricted

    def test_unknown_role_is_empty(self, sample_dataset, make_session):
        view = scope(sample_dataset, make_session(role="owner"))
        assert all(view.get(table) == () for table in sample_dataset)


class TestAdminScope:
    def test_all_stores_by_default(self, sample_dataset, make_session):
        view = scope(sample_dataset, make_session(role="admin"))
        assert ids(view["revenue"]) == ["r1", "r2", "r3"]
        assert ids(view["payslips"]) == ["s1"]
        assert not view.unrestricted

    def test_selected_store_narrows_store_scoped_only(self, sample_dataset, make_session):
        view = scope(sample_dataset, make_session(role="admin"), "StoreB")
        assert ids(view["revenue"]) == ["r2", "r3"]
        assert ids(view["expenses"]) == ["e2"]
        assert ids(view["inventory"]) == ["i1"]

    def test_superadmin_is_flagged_unrestricted(self, sample_dataset, make_session):
        view = scope(sample_dataset, make_session(role="superadmin"))
        assert view.unrestricted
        assert ids(view["revenue"]) == ["r1", "r2", "r3"]


class TestManagerScope:
    def test_assigned_store_plus_shared(self, sample_dataset, make_session):
        """Manager of StoreA sees StoreA and shared records only"""
        view = scope(sample_dataset, make_session(role="manager", stores={"StoreA"}))
        assert ids(view["revenue"]) == ["r1", "r3"]
        assert ids(view["expenses"]) == ["e1"]
        assert view["bookings"] == ()

    def test_unassigned_store_selection_is_ignored(self, sample_dataset, make_session):
        view = scope(sample_dataset, make_session(role="manager", stores={"StoreA"}), "StoreB")
        assert ids(view["revenue"]) == ["r1", "r3"]

    def test_payroll_not_allow_listed(self, sample_dataset, make_session):
        view = scope(sample_dataset, make_session(role="manager"))
        assert view["payslips"] == ()
        assert ids(view["arap"]) == ["a1"]

    def test_staff_gets_no_arap(self, sample_dataset, make_session):
        view = scope(sample_dataset, make_session(role="staff"))
        assert view["arap"] == ()
        assert ids(view["inventory"]) == ["i1"]

    def test_custom_shared_sentinel(self, make_session):
        dataset = {"revenue": [{"id": 1, "store": "兩店共用"}, {"id": 2, "store": "shared"}]}
        view = scope(dataset, make_session(role="staff", stores=()), shared_store="兩店共用")
        assert ids(view["revenue"]) == [1]


class TestDoctorScope:
    def test_only_own_records(self, sample_dataset, make_session):
        view = scope(sample_dataset, make_session(role="doctor", name="Dr Lee"))
        assert ids(view["revenue"]) == ["r1", "r3"]
        assert ids(view["bookings"]) == ["b1"]
        assert ids(view["patients"]) == ["p1"]

    def test_financial_collections_forced_empty(self, sample_dataset, make_session):
        view = scope(sample_dataset, make_session(role="doctor", name="Dr Lee"))
        assert view["expenses"] == ()
        assert view["arap"] == ()
        assert view["inventory"] == ()


class TestFailClosed:
    """Every collection not allow-listed for a role comes back empty"""

    ALLOWED = {
        Role.MANAGER: STORE_SCOPED | MANAGER_PASSTHROUGH,
        Role.STAFF: STORE_SCOPED | STAFF_PASSTHROUGH,
        Role.DOCTOR: DOCTOR_TABLES,
    }

    @pytest.mark.parametrize("role", [Role.MANAGER, Role.STAFF, Role.DOCTOR])
    def test_unlisted_tables_empty(self, role, make_session):
        dataset = {name: [{"id": 1, "store": "StoreA", "doctor": "Alice"}]
                   for name in ["revenue", "arap", "payslips", "secret_new_table", "inventory", "consultations"]}
        view = scope(dataset, make_session(role=role.value, stores={"StoreA"}, name="Alice"))
        for table in dataset:
            if table not in self.ALLOWED[role]:
                assert view[table] == (), f"{role.value} leaked {table}"

    def test_every_role_has_a_policy(self):
        assert set(_POLICIES) == set(Role)


class TestPurity:
    def test_inputs_not_mutated(self, sample_dataset, make_session):
        before = copy.deepcopy(sample_dataset)
        scope(sample_dataset, make_session(role="manager"), "StoreA")
        scope(sample_dataset, make_session(role="doctor", name="Dr Lee"))
        assert sample_dataset == before

    def test_scoped_records_are_read_only_copies(self, sample_dataset, make_session):
        record = scope(sample_dataset, make_session(role="admin"))["revenue"][0]
        with pytest.raises(TypeError):
            record["amount"] = 0
        assert sample_dataset["revenue"][0]["amount"] == 300

    def test_nested_values_are_copied(self, make_session):
        dataset = {"consultations": [{"id": "c1", "doctor": "Dr Lee", "items": ["herb"]}]}
        record = scope(dataset, make_session(role="doctor", name="Dr Lee"))["consultations"][0]
        record["items"].append("needle")
        assert dataset["consultations"][0]["items"] == ["herb"]


class TestScopedDataset:
    def test_to_frame(self, sample_dataset, make_session):
        frame = scope(sample_dataset, make_session(role="admin")).to_frame("revenue")
        assert isinstance(frame, pd.DataFrame)
        assert list(frame["id"]) == ["r1", "r2", "r3"]

    def test_unknown_table_is_empty(self, sample_dataset, make_session):
        view = scope(sample_dataset, make_session(role="admin"))
        assert view.get("nothing") == ()
        assert view.to_frame("nothing").empty

    def test_is_visible(self, make_session):
        manager = make_session(role="manager", stores={"StoreA"})
        assert is_visible({"id": 1, "store": "StoreA"}, "revenue", manager)
        assert not is_visible({"id": 1, "store": "StoreB"}, "revenue", manager)
