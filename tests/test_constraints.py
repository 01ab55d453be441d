"""
Stretch constraint tests: single spring correction, pinned endpoints, Jacobi
behaviour on a chain, flexion exemption and the stretch bound after stepping.
"""

import numpy as np
import pytest

from ti_sim_param import SimParam, SPRING_FLEXION
from ti_cloth_solver import ClothSolver


# ── Helpers ──────────────────────────────────────────────

def make_solver(rows=1, cols=2, **kwargs):
    kwargs.setdefault("density", 1.0)
    kwargs.setdefault("gravity", (0.0, 0.0, 0.0))
    kwargs.setdefault("damping", 0.0)
    kwargs.setdefault("pins", [])
    kwargs.setdefault("pin_offset", 0.0)
    kwargs.setdefault("origin", (0.0, 0.0, 0.0))
    kwargs.setdefault("integrator", "euler")
    return ClothSolver.from_param(SimParam(rows=rows, cols=cols, **kwargs))


def stretch_chain(solver, spacing):
    for i in range(solver.cloth.n_verts):
        if not solver.cloth.fixed_mask()[i]:
            solver.cloth.set_position(i, (i * spacing, 0.0, 0.0))


# ── Single spring ────────────────────────────────────────

class TestSingleSpring:

    def test_corrected_in_one_pass(self):
        solver = make_solver(constraint_iterations=10)
        solver.cloth.set_position(1, (2.0, 0.0, 0.0))
        passes = solver.solve_constraints()
        length = solver.cloth.spring_lengths()[0]
        assert length <= 1.5 + 1e-12
        assert length == pytest.approx(1.5)
        # the second pass finds nothing left to fix
        assert passes == 2

    def test_both_endpoints_move_half(self):
        solver = make_solver()
        solver.cloth.set_position(1, (2.0, 0.0, 0.0))
        solver.solve_constraints()
        p = solver.cloth.positions()
        np.testing.assert_allclose(p[0], [0.25, 0.0, 0.0])
        np.testing.assert_allclose(p[1], [1.75, 0.0, 0.0])

    def test_pinned_endpoint_stays(self):
        solver = make_solver(pins=[(0, 0)])
        solver.cloth.set_position(1, (2.0, 0.0, 0.0))
        solver.solve_constraints()
        p = solver.cloth.positions()
        np.testing.assert_array_equal(p[0], [0.0, 0.0, 0.0])
        np.testing.assert_allclose(p[1], [1.5, 0.0, 0.0])

    def test_both_pinned_left_alone(self):
        solver = make_solver(pins=[(0, 0), (0, 1)], pin_offset=2.0)
        before = solver.cloth.positions()
        assert solver.solve_constraints() == 1
        np.testing.assert_array_equal(solver.cloth.positions(), before)

    def test_compressed_spring_untouched(self):
        solver = make_solver()
        solver.cloth.set_position(1, (0.5, 0.0, 0.0))
        solver.solve_constraints()
        np.testing.assert_allclose(solver.cloth.positions()[1], [0.5, 0.0, 0.0])

    def test_velocity_follows_correction(self):
        solver = make_solver()
        solver.cloth.set_position(1, (2.0, 0.0, 0.0))
        solver.solve_constraints(dt=0.1)
        v = solver.cloth.velocities()
        np.testing.assert_allclose(v[0], [2.5, 0.0, 0.0])
        np.testing.assert_allclose(v[1], [-2.5, 0.0, 0.0])


# ── Chains ───────────────────────────────────────────────

class TestChain:

    def test_flexion_springs_are_exempt(self):
        solver = make_solver(rows=1, cols=3)
        stretch_chain(solver, 3.0)
        # two structural springs over the limit; the flexion spring is too but is skipped
        assert solver._relax_stretch() == 2

    def test_jacobi_halves_the_violation(self):
        solver = make_solver(rows=1, cols=3)
        stretch_chain(solver, 3.0)
        solver._relax_stretch()
        p = solver.cloth.positions()
        np.testing.assert_allclose(p[:, 0], [0.75, 3.0, 5.25])

    def test_corrections_add_up_on_a_shared_particle(self):
        # corner 3 dragged away from a 2x2 patch: its two structural springs and
        # its shear spring all pull it back within the same pass
        solver = make_solver(rows=2, cols=2)
        solver.cloth.set_position(3, (3.0, 0.0, 3.0))
        start = solver.cloth.positions()
        assert solver._relax_stretch() == 3
        expected = start[3].copy()
        for other, max_length in ((1, 1.5), (2, 1.5), (0, 1.5 * np.sqrt(2.0))):
            d = start[3] - start[other]
            length = np.linalg.norm(d)
            expected -= d / length * (length - max_length) / 2.0
        p = solver.cloth.positions()
        np.testing.assert_allclose(p[3], expected)
        np.testing.assert_allclose(p[3], [0.79007, 0.0, 0.79007], atol=1e-4)
        # particle 0 only takes part in the shear spring
        np.testing.assert_allclose(p[0], [0.75, 0.0, 0.75])

    def test_residual_left_when_budget_runs_out(self):
        solver = make_solver(rows=1, cols=3, constraint_iterations=3)
        stretch_chain(solver, 3.0)
        assert solver.solve_constraints() == 3
        structural = solver.cloth.spring_types() != SPRING_FLEXION
        assert np.all(solver.cloth.spring_lengths()[structural] > 1.5)

    def test_converges_with_enough_passes(self):
        solver = make_solver(rows=1, cols=3, constraint_iterations=40)
        stretch_chain(solver, 3.0)
        solver.solve_constraints()
        structural = solver.cloth.spring_types() != SPRING_FLEXION
        assert np.all(solver.cloth.spring_lengths()[structural] <= 1.5 + 1e-6)


# ── Stretch bound after a step ───────────────────────────

class TestStretchBound:

    @staticmethod
    def run_soft_cloth(integrator, apply_constraints):
        solver = make_solver(rows=5, cols=5, pins=None, pin_offset=0.0, integrator=integrator,
                             structural_stiffness=1.0, shear_stiffness=1.0, bending_stiffness=1.0,
                             gravity=(0.0, -20.0, 0.0), damping=0.1, constraint_iterations=200)
        for _ in range(40):
            solver.step(dt=0.01, apply_constraints=apply_constraints)
        return solver.cloth

    @pytest.mark.parametrize("integrator", ["euler", "rk4", "verlet"])
    def test_soft_cloth_held_to_max_length(self, integrator):
        cloth = self.run_soft_cloth(integrator, apply_constraints=True)
        pairs = cloth.spring_pairs()
        fixed = cloth.fixed_mask()
        checked = ~fixed[pairs[:, 0]] & ~fixed[pairs[:, 1]] & (cloth.spring_types() != SPRING_FLEXION)
        worst = np.max(cloth.spring_lengths()[checked] - cloth.max_lengths()[checked])
        assert worst <= 1e-3, f"spring over its limit by {worst:.3e}"

    def test_soft_cloth_overstretches_without_constraints(self):
        cloth = self.run_soft_cloth("euler", apply_constraints=False)
        structural = cloth.spring_types() != SPRING_FLEXION
        assert np.any(cloth.spring_lengths()[structural] > cloth.max_lengths()[structural])
