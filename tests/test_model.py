"""
Tests for the physical model.
"""

import pytest
import numpy as np
from numpy.testing import assert_allclose

from dmri_fem.model import GAMMA_PROTON, Model


class TestCoefficients:
    """Tests for coefficient broadcasting and defaults."""

    def test_defaults(self, coupled_mesh):
        model = Model(mesh=coupled_mesh, D=1.0)
        assert model.T2 == [np.inf, np.inf]
        assert model.rho == [1.0, 1.0]
        assert model.kappa == [0.0, 0.0, 0.0]
        assert model.gamma == GAMMA_PROTON

    def test_scalar_diffusivity_is_isotropic(self, coupled_mesh):
        model = Model(mesh=coupled_mesh, D=[2.0, 0.5])
        assert_allclose(model.D[0], 2.0 * np.eye(3))
        assert_allclose(model.D[1], 0.5 * np.eye(3))

    def test_single_tensor_shared(self, coupled_mesh):
        tensor = np.diag([1.0, 2.0, 3.0])
        model = Model(mesh=coupled_mesh, D=tensor)
        assert len(model.D) == 2
        assert_allclose(model.D[1], tensor)

    def test_tensor_stack(self, coupled_mesh):
        tensors = np.stack([np.eye(3), 2.0 * np.eye(3)])
        model = Model(mesh=coupled_mesh, D=tensors)
        assert_allclose(model.D[1], 2.0 * np.eye(3))

    def test_scalar_broadcast(self, coupled_mesh):
        model = Model(mesh=coupled_mesh, D=1.0, T2=40.0, rho=0.5, kappa=0.1)
        assert model.T2 == [40.0, 40.0]
        assert model.rho == [0.5, 0.5]
        assert model.kappa == [0.1, 0.1, 0.1]


class TestValidation:
    """Tests for rejected coefficients."""

    def test_wrong_number_of_tensors(self, coupled_mesh):
        with pytest.raises(ValueError, match="diffusion tensors"):
            Model(mesh=coupled_mesh, D=[1.0, 1.0, 1.0])

    def test_wrong_number_of_kappas(self, coupled_mesh):
        with pytest.raises(ValueError, match="kappa"):
            Model(mesh=coupled_mesh, D=1.0, kappa=[0.1, 0.2])

    def test_asymmetric_tensor(self, box_mesh):
        tensor = np.eye(3)
        tensor[0, 1] = 0.5
        with pytest.raises(ValueError, match="symmetric"):
            Model(mesh=box_mesh, D=tensor)

    def test_indefinite_tensor(self, box_mesh):
        with pytest.raises(ValueError, match="positive semi-definite"):
            Model(mesh=box_mesh, D=np.diag([1.0, -1.0, 1.0]))

    def test_non_positive_t2(self, box_mesh):
        with pytest.raises(ValueError, match="T2"):
            Model(mesh=box_mesh, D=1.0, T2=0.0)


class TestDerivedQuantities:
    """Tests for initial conditions and mean diffusivity."""

    def test_initial_conditions(self, coupled_model):
        xi = coupled_model.initial_conditions()
        assert xi.dtype == np.complex128
        assert xi.shape == (54,)
        assert_allclose(xi[:27], 1.0)
        assert_allclose(xi[27:], 0.6)

    def test_initial_conditions_are_fresh(self, coupled_model):
        xi = coupled_model.initial_conditions()
        xi[:] = 0.0
        assert_allclose(coupled_model.initial_conditions()[0], 1.0)

    def test_mean_diffusivity(self, coupled_model):
        # Equal volumes, D = 1 and 0.5
        assert_allclose(coupled_model.mean_diffusivity(), 0.75)

    def test_anisotropic_mean_diffusivity(self, box_mesh):
        model = Model(mesh=box_mesh, D=np.diag([1.0, 2.0, 3.0]))
        assert_allclose(model.mean_diffusivity(), 2.0)
