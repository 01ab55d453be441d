"""
Configuration tests: default demo values and rejection of bad settings.
"""

import numpy as np
import pytest

from ti_sim_param import SimParam, INTEGRATORS


class TestDefaults:

    def test_default_demo_values(self):
        param = SimParam()
        assert (param.rows, param.cols) == (40, 40)
        assert param.density == 4.0
        assert (param.structural_stiffness, param.shear_stiffness, param.bending_stiffness) == (300.0, 200.0, 200.0)
        assert param.damping == 0.1
        assert param.gravity == [0.0, -2.0, 0.0]
        assert param.origin == [-5.0, 16.0, 0.0]
        assert param.dt == 0.01
        assert param.substeps == 25
        assert param.constraint_iterations == 10
        assert param.stretch_ratio == 1.5

    def test_top_row_corners_pinned_by_default(self):
        param = SimParam(rows=3, cols=5)
        assert param.pins == [(0, 0), (0, 4)]

    def test_pin_offsets_point_inward(self):
        param = SimParam(rows=3, cols=5, pin_offset=0.25)
        left, right = param.pin_offsets()
        np.testing.assert_array_equal(left, [0.25, 0.0, 0.0])
        np.testing.assert_array_equal(right, [-0.25, 0.0, 0.0])

    def test_middle_column_pin_not_offset(self):
        param = SimParam(rows=3, cols=5, pins=[(0, 2)], pin_offset=0.25)
        np.testing.assert_array_equal(param.pin_offsets()[0], 0.0)

    def test_single_column_pins_once(self):
        assert SimParam(rows=3, cols=1).pins == [(0, 0)]

    def test_spacing(self):
        assert SimParam(density=4.0).spacing == 0.25

    def test_all_integrators_accepted(self):
        for name in INTEGRATORS:
            assert SimParam(rows=2, cols=2, integrator=name).integrator == name


class TestValidation:

    @pytest.mark.parametrize("kwargs", [
        dict(rows=1, cols=1),
        dict(rows=0, cols=5),
        dict(density=0.0),
        dict(integrator="leapfrog"),
        dict(dt=0.0),
        dict(substeps=0),
        dict(stretch_ratio=0.9),
        dict(constraint_iterations=-1),
        dict(particle_mass=0.0),
        dict(gravity=(0.0, -1.0)),
        dict(rows=3, cols=3, pins=[(3, 0)]),
    ])
    def test_rejected(self, kwargs):
        with pytest.raises(ValueError):
            SimParam(**kwargs)

    def test_empty_pin_list_allowed(self):
        assert SimParam(rows=2, cols=2, pins=[]).pins == []
