import logging
import taichi as ti
import numpy as np
from ti_cloth_mesh import ClothMesh
from ti_collision import CollisionResolver
from ti_sim_param import INTEGRATOR_EULER, INTEGRATOR_RK4, INTEGRATOR_VERLET, SPRING_FLEXION

logger = logging.getLogger(__name__)

# springs shorter than this exert no elastic force
EPS_LENGTH = 1e-12

@ti.data_oriented
class ClothSolver:
    """Mass-spring cloth stepper.

    One sub-step runs force accumulation, the configured integrator, the
    optional stretch constraints and the collision response, in that order.
    """

    def __init__(self, cloth_mesh, sim_param):
        self.cloth = cloth_mesh
        self.sim_param = sim_param
        self.damping = sim_param.damping
        self.viscosity = sim_param.viscosity
        self.gravity = ti.Vector.field(3, ti.f64, ())
        self.gravity[None] = sim_param.gravity
        self.fluid_velocity = ti.Vector.field(3, ti.f64, ())
        self.fluid_velocity[None] = sim_param.fluid_velocity
        self._force_arg = ti.Vector.field(3, ti.f64, ())

        n = max(self.cloth.n_verts, 1)
        # rk4 snapshot and weighted derivative sums
        self.vec_X0 = ti.Vector.field(3, ti.f64, n)
        self.vec_V0 = ti.Vector.field(3, ti.f64, n)
        self.vec_sum_dX = ti.Vector.field(3, ti.f64, n)
        self.vec_sum_dV = ti.Vector.field(3, ti.f64, n)
        # jacobi corrections, all taken from the state at the start of a pass
        self.vec_dX = ti.Vector.field(3, ti.f64, n)

        self.collision = CollisionResolver(self.cloth)
        self._integrate = {
            INTEGRATOR_EULER: self._step_euler,
            INTEGRATOR_RK4: self._step_rk4,
            INTEGRATOR_VERLET: self._step_verlet,
        }[sim_param.integrator]
        # verlet damps through its position update instead of a drag force
        self._drag = 0.0 if sim_param.integrator == INTEGRATOR_VERLET else self.damping
        self.n_steps = 0
        logger.info('cloth solver ready: %r', sim_param)

    @classmethod
    def from_param(cls, sim_param):
        return cls(ClothMesh(sim_param), sim_param)

    # public api
    def step(self, obstacle=None, dt=None, apply_constraints=True):
        """Advance the cloth by one sub-step."""
        dt = self.sim_param.dt if dt is None else float(dt)
        self._integrate(dt)
        if apply_constraints:
            self.solve_constraints(dt)
        self.collision.resolve(obstacle, dt)
        self.n_steps += 1

    def update(self, obstacle=None, apply_constraints=True):
        """Run one rendered frame worth of sub-steps and refresh the normals."""
        for _ in range(self.sim_param.substeps):
            self.step(obstacle, self.sim_param.dt, apply_constraints)
        self.compute_normals()

    def compute_normals(self):
        self.cloth.update_normal()

    def add_force(self, force):
        """Add ``force`` to every free particle; consumed by the next sub-step."""
        self._force_arg[None] = self._as_vector(force)
        self._add_force_all()

    def add_force_to_particle(self, index, force):
        self.cloth._check_index(index)
        current = self.cloth.verts_force_ext[index].to_numpy()
        self.cloth.verts_force_ext[index] = (current + np.array(self._as_vector(force))).tolist()

    def reset(self):
        self.cloth.reset()
        self.n_steps = 0
        logger.info('cloth reset')

    def compute_forces(self):
        self._accumulate_forces(self._drag)

    def solve_constraints(self, dt=None):
        """Jacobi passes until no spring is over-stretched or the budget runs out.

        Returns the number of passes run.
        """
        dt = self.sim_param.dt if dt is None else float(dt)
        passes = 0
        n_corrected = 0
        for _ in range(self.sim_param.constraint_iterations):
            n_corrected = self._relax_stretch()
            passes += 1
            if n_corrected == 0:
                break
        if n_corrected > 0:
            logger.debug('stretch constraints left %d springs over the limit after %d passes', n_corrected, passes)
        self._update_V(dt)
        return passes

    @staticmethod
    def _as_vector(force):
        force = np.asarray(force, dtype=np.float64)
        if force.shape != (3,):
            raise ValueError('force must be a 3-vector, got shape %s' % (force.shape,))
        return force.tolist()

    # force accumulation
    @ti.kernel
    def _accumulate_forces(self, drag: ti.f64):
        for i in range(self.cloth.n_verts):
            self.cloth.verts_force[i] = ti.Vector([0.0, 0.0, 0.0], dt=ti.f64)
        # fixed summation order
        ti.loop_config(serialize=True)
        for s in range(self.cloth.n_edges):
            d = self.cloth.edge_vector(s)
            length = d.norm()
            if length > EPS_LENGTH:
                f = d * (self.cloth.edges_stiffness[s] / length * (length - self.cloth.edges_length_rest[s]))
                e = self.cloth.edges[s]
                self.cloth.verts_force[e[0]] -= f
                self.cloth.verts_force[e[1]] += f
        for i in range(self.cloth.n_verts):
            if self.cloth.verts_is_fixed[i] == 0:
                v = self.cloth.verts_vel[i]
                f = -v * drag + self.gravity[None] * self.cloth.verts_mass[i] + self.cloth.verts_force_ext[i]
                if ti.static(self.viscosity != 0.0):
                    n = self.cloth.vnormals[i]
                    f += self.viscosity * n.dot(self.fluid_velocity[None] - v) * n
                self.cloth.verts_force[i] += f
            else:
                self.cloth.verts_force[i] = ti.Vector([0.0, 0.0, 0.0], dt=ti.f64)

    @ti.kernel
    def _add_force_all(self):
        for i in range(self.cloth.n_verts):
            if self.cloth.verts_is_fixed[i] == 0:
                self.cloth.verts_force_ext[i] += self._force_arg[None]

    # integrators
    def _step_euler(self, dt):
        self.compute_forces()
        self._integrate_euler(dt)
        self.cloth.verts_force_ext.fill(0.0)

    def _step_verlet(self, dt):
        self.compute_forces()
        self._integrate_verlet(dt)
        self.cloth.verts_force_ext.fill(0.0)

    def _step_rk4(self, dt):
        self._rk4_begin()
        for weight, scale in ((1.0, 0.5), (2.0, 0.5), (2.0, 1.0)):
            self.compute_forces()
            self._rk4_stage(weight, scale * dt)
        self.compute_forces()
        self._rk4_finish(dt)
        self.cloth.verts_force_ext.fill(0.0)

    @ti.kernel
    def _integrate_euler(self, dt: ti.f64):
        for i in range(self.cloth.n_verts):
            if self.cloth.verts_is_fixed[i] == 0:
                self.cloth.verts_prev[i] = self.cloth.verts[i]
                v = self.cloth.verts_vel[i] + self.cloth.verts_force[i] / self.cloth.verts_mass[i] * dt
                self.cloth.verts_vel[i] = v
                self.cloth.verts[i] += v * dt

    @ti.kernel
    def _integrate_verlet(self, dt: ti.f64):
        for i in range(self.cloth.n_verts):
            if self.cloth.verts_is_fixed[i] == 0:
                x = self.cloth.verts[i]
                a = self.cloth.verts_force[i] / self.cloth.verts_mass[i]
                x_next = x + (1.0 - self.damping) * (x - self.cloth.verts_prev[i]) + a * dt * dt
                self.cloth.verts[i] = x_next
                self.cloth.verts_prev[i] = x
                self.cloth.verts_vel[i] = (x_next - x) / dt

    @ti.kernel
    def _rk4_begin(self):
        for i in range(self.cloth.n_verts):
            self.vec_X0[i] = self.cloth.verts[i]
            self.vec_V0[i] = self.cloth.verts_vel[i]
            self.vec_sum_dX[i] = ti.Vector([0.0, 0.0, 0.0], dt=ti.f64)
            self.vec_sum_dV[i] = ti.Vector([0.0, 0.0, 0.0], dt=ti.f64)
            if self.cloth.verts_is_fixed[i] == 0:
                self.cloth.verts_prev[i] = self.cloth.verts[i]

    @ti.kernel
    def _rk4_stage(self, weight: ti.f64, h: ti.f64):
        # record this stage's derivative, then move to the next evaluation point
        for i in range(self.cloth.n_verts):
            if self.cloth.verts_is_fixed[i] == 0:
                v = self.cloth.verts_vel[i]
                a = self.cloth.verts_force[i] / self.cloth.verts_mass[i]
                self.vec_sum_dX[i] += weight * v
                self.vec_sum_dV[i] += weight * a
                self.cloth.verts[i] = self.vec_X0[i] + h * v
                self.cloth.verts_vel[i] = self.vec_V0[i] + h * a

    @ti.kernel
    def _rk4_finish(self, dt: ti.f64):
        for i in range(self.cloth.n_verts):
            if self.cloth.verts_is_fixed[i] == 0:
                v = self.cloth.verts_vel[i]
                a = self.cloth.verts_force[i] / self.cloth.verts_mass[i]
                self.cloth.verts[i] = self.vec_X0[i] + dt / 6.0 * (self.vec_sum_dX[i] + v)
                self.cloth.verts_vel[i] = self.vec_V0[i] + dt / 6.0 * (self.vec_sum_dV[i] + a)

    # stretch constraints
    @ti.kernel
    def _relax_stretch(self) -> ti.i32:
        for i in range(self.cloth.n_verts):
            self.vec_dX[i] = ti.Vector([0.0, 0.0, 0.0], dt=ti.f64)
        n_corrected = 0
        ti.loop_config(serialize=True)
        for s in range(self.cloth.n_edges):
            if self.cloth.edges_type[s] != SPRING_FLEXION:
                e = self.cloth.edges[s]
                fixed_a = self.cloth.verts_is_fixed[e[0]]
                fixed_b = self.cloth.verts_is_fixed[e[1]]
                if fixed_a == 0 or fixed_b == 0:
                    d = self.cloth.verts[e[1]] - self.cloth.verts[e[0]]
                    length = d.norm()
                    max_length = self.cloth.edges_length_max[s]
                    if length > max_length:
                        movable = (1 - fixed_a) + (1 - fixed_b)
                        correction = d / length * ((length - max_length) / movable)
                        if fixed_a == 0:
                            self.vec_dX[e[0]] += correction
                        if fixed_b == 0:
                            self.vec_dX[e[1]] -= correction
                        n_corrected += 1
        for i in range(self.cloth.n_verts):
            if self.cloth.verts_is_fixed[i] == 0:
                self.cloth.verts[i] += self.vec_dX[i]
        return n_corrected

    @ti.kernel
    def _update_V(self, dt: ti.f64):
        for i in range(self.cloth.n_verts):
            self.cloth.verts_vel[i] = (self.cloth.verts[i] - self.cloth.verts_prev[i]) / dt
