import logging
import numpy as np

logger = logging.getLogger(__name__)

# integration schemes
INTEGRATOR_EULER = 'euler'
INTEGRATOR_RK4 = 'rk4'
INTEGRATOR_VERLET = 'verlet'
INTEGRATORS = (INTEGRATOR_EULER, INTEGRATOR_RK4, INTEGRATOR_VERLET)

# spring categories, stored as i32 in the spring fields
SPRING_STRUCTURAL = 0
SPRING_SHEAR = 1
SPRING_FLEXION = 2

class SimParam:
    def __init__(self,
                 rows=40,
                 cols=40,
                 density=4.0,
                 structural_stiffness=300.0,
                 shear_stiffness=200.0,
                 bending_stiffness=200.0,
                 damping=0.1,
                 gravity=(0.0, -2.0, 0.0),
                 integrator=INTEGRATOR_VERLET,
                 viscosity=0.0,
                 fluid_velocity=(0.0, 0.0, 0.0),
                 constraint_iterations=10,
                 stretch_ratio=1.5,
                 pins=None,
                 pin_offset=0.1,
                 particle_mass=1.0,
                 origin=(-5.0, 16.0, 0.0),
                 dt=0.01,
                 substeps=25):
        self.rows = int(rows)
        self.cols = int(cols)
        self.density = float(density)
        self.structural_stiffness = float(structural_stiffness)
        self.shear_stiffness = float(shear_stiffness)
        self.bending_stiffness = float(bending_stiffness)
        self.damping = float(damping)
        self.gravity = [float(g) for g in gravity]
        self.integrator = integrator
        self.viscosity = float(viscosity)
        self.fluid_velocity = [float(u) for u in fluid_velocity]
        self.constraint_iterations = int(constraint_iterations)
        self.stretch_ratio = float(stretch_ratio)
        # top row corners unless told otherwise
        if pins is None:
            pins = [(0, 0)] if self.cols == 1 else [(0, 0), (0, self.cols - 1)]
        self.pins = [(int(r), int(c)) for r, c in pins]
        self.pin_offset = float(pin_offset)
        self.particle_mass = float(particle_mass)
        self.origin = [float(o) for o in origin]
        self.dt = float(dt)
        self.substeps = int(substeps)
        self._validate()

    def _validate(self):
        if self.rows < 1 or self.cols < 1 or self.rows * self.cols < 2:
            raise ValueError('cloth grid needs at least two particles, got %dx%d' % (self.rows, self.cols))
        if self.density <= 0.0:
            raise ValueError('density must be positive, got %r' % self.density)
        if self.integrator not in INTEGRATORS:
            raise ValueError('unknown integrator %r, expected one of %s' % (self.integrator, ', '.join(INTEGRATORS)))
        if len(self.gravity) != 3 or len(self.fluid_velocity) != 3 or len(self.origin) != 3:
            raise ValueError('gravity, fluid_velocity and origin must be 3-vectors')
        if self.dt <= 0.0 or self.substeps < 1:
            raise ValueError('dt and substeps must be positive')
        if self.stretch_ratio < 1.0:
            raise ValueError('stretch_ratio must be >= 1.0, got %r' % self.stretch_ratio)
        if self.constraint_iterations < 0:
            raise ValueError('constraint_iterations must be >= 0')
        if self.particle_mass <= 0.0:
            raise ValueError('particle_mass must be positive')
        for r, c in self.pins:
            if not (0 <= r < self.rows and 0 <= c < self.cols):
                raise ValueError('pin (%d, %d) lies outside the %dx%d grid' % (r, c, self.rows, self.cols))

    @property
    def spacing(self):
        return 1.0 / self.density

    def pin_offsets(self):
        """X offset for each pin, pointing toward the middle column (zero on it)."""
        middle = (self.cols - 1) / 2.0
        offsets = []
        for _, c in self.pins:
            sign = float(np.sign(middle - c))
            offsets.append(np.array([sign * self.pin_offset, 0.0, 0.0]))
        return offsets

    def __repr__(self):
        return 'SimParam(%dx%d, density=%g, integrator=%s, dt=%g, substeps=%d)' % (
            self.rows, self.cols, self.density, self.integrator, self.dt, self.substeps)
