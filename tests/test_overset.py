"""Tests for the overset field-exchange driver."""

import numpy as np
import pytest

from pyeqsys.coupling import OversetCouplingDriver, OversetFieldUpdate
from pyeqsys.errors import ConfigurationError, FieldNotFoundError
from pyeqsys.mesh import EntityRank, Mesh, build_overset_mesh
from pyeqsys.realm import Realm


def _make_overset_realm():
    background = Mesh.structured_rectangle(1.0, 1.0, 11, 11, name="background")
    component = Mesh.structured_rectangle(
        0.4, 0.4, 9, 9, origin=(0.3, 0.3), tag=2, name="component_1"
    )
    mesh, assembly = build_overset_mesh(background, [component], hole_margin=0.1)
    realm = Realm("fluid", mesh, assembly)
    realm.fields.register_field("temperature")
    realm.fields.register_field("velocity", n_components=2)
    return realm


class TestRegistration:
    def test_register(self):
        realm = _make_overset_realm()
        driver = realm.equation_systems.overset_driver
        driver.register_overset_field_update("temperature")
        driver.register_overset_field_update("velocity", 2, 1)
        assert driver.registrations == (
            OversetFieldUpdate("temperature", 1, 1),
            OversetFieldUpdate("velocity", 2, 1),
        )

    def test_duplicate_is_skipped(self):
        realm = _make_overset_realm()
        driver = realm.equation_systems.overset_driver
        driver.register_overset_field_update("temperature")
        driver.register_overset_field_update("temperature")
        assert len(driver.registrations) == 1

    def test_unknown_field(self):
        realm = _make_overset_realm()
        with pytest.raises(FieldNotFoundError, match="pressure"):
            realm.equation_systems.register_overset_field_update("pressure")

    def test_element_field_rejected(self):
        realm = _make_overset_realm()
        realm.fields.register_field("volume", rank=EntityRank.ELEMENT)
        with pytest.raises(FieldNotFoundError):
            realm.equation_systems.overset_driver.register_overset_field_update("volume")

    def test_shape_mismatch(self):
        realm = _make_overset_realm()
        with pytest.raises(ConfigurationError, match="declared as 2x1"):
            realm.equation_systems.overset_driver.register_overset_field_update("temperature", 2, 1)


class TestExecute:
    def test_exchange_overwrites_receptors(self):
        realm = _make_overset_realm()
        driver = realm.equation_systems.overset_driver
        driver.register_overset_field_update("temperature")
        driver.register_overset_field_update("velocity", 2, 1)

        xy = realm.mesh.nodes
        T = realm.fields.values("temperature")
        T[:] = 1.0 - xy[:, 0]
        u = realm.fields.values("velocity")
        u[:] = xy
        receptors = realm.overset_assembly.receptors
        T[receptors] = -5.0
        u[receptors] = -5.0

        driver.execute()
        np.testing.assert_allclose(T, 1.0 - xy[:, 0], atol=1e-12)
        np.testing.assert_allclose(u, xy, atol=1e-12)
        assert driver.n_executions == 1

    def test_exchange_single_field(self):
        realm = _make_overset_realm()
        driver = realm.equation_systems.overset_driver
        T = realm.fields.values("temperature")
        T[:] = realm.mesh.nodes[:, 1]
        T[realm.overset_assembly.receptors] = 0.0
        driver.exchange_field("temperature")
        np.testing.assert_allclose(T, realm.mesh.nodes[:, 1], atol=1e-12)
        assert driver.n_executions == 0

    def test_noop_without_assembly(self):
        realm = Realm("fluid", Mesh.structured_rectangle(1.0, 1.0, 3, 3))
        realm.fields.register_field("temperature")
        driver = OversetCouplingDriver(realm)
        driver.register_overset_field_update("temperature")
        driver.execute()
        assert driver.n_executions == 0

    def test_realm_released(self):
        realm = Realm("fluid", Mesh.structured_rectangle(1.0, 1.0, 3, 3))
        driver = OversetCouplingDriver(realm)
        del realm
        with pytest.raises(RuntimeError, match="no longer exists"):
            driver.execute()
