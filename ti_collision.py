import logging
import taichi as ti
from ti_rigid import Sphere, Cube

logger = logging.getLogger(__name__)

@ti.data_oriented
class CollisionResolver:
    """Pushes cloth particles out of a rigid obstacle and reflects their velocity.

    Pinned particles are left alone so a pin never moves during a step.
    """

    def __init__(self, cloth_mesh):
        self.cloth = cloth_mesh
        self.obstacle_center = ti.Vector.field(3, ti.f64, ())
        self.n_collided = ti.field(ti.i32, ())
        self._ignored_types = set()

    def resolve(self, obstacle, dt):
        if obstacle is None:
            return 0
        if isinstance(obstacle, Sphere):
            self.obstacle_center[None] = [float(c) for c in obstacle.center]
            self._collide_sphere(obstacle.radius, obstacle.friction, dt)
        elif isinstance(obstacle, Cube):
            self.obstacle_center[None] = [float(c) for c in obstacle.center]
            self._collide_cube(obstacle.half_extent, obstacle.friction, dt)
        else:
            if type(obstacle) not in self._ignored_types:
                self._ignored_types.add(type(obstacle))
                logger.warning('no collision response for obstacle type %s, ignoring it', type(obstacle).__name__)
            return 0
        return self.n_collided[None]

    @ti.func
    def _respond(self, i, p, normal, friction, dt):
        # p is the corrected world position, normal points out of the obstacle
        self.cloth.verts[i] = p - self.cloth.origin[None]
        v = self.cloth.verts_vel[i]
        vn = v.dot(normal)
        if vn < 0.0:
            v = (v - 2.0 * vn * normal) * friction
            self.cloth.verts_vel[i] = v
        # keep the implicit verlet velocity in line with the explicit one
        self.cloth.verts_prev[i] = self.cloth.verts[i] - v * dt
        self.n_collided[None] += 1

    @ti.kernel
    def _collide_sphere(self, radius: ti.f64, friction: ti.f64, dt: ti.f64):
        self.n_collided[None] = 0
        center = self.obstacle_center[None]
        origin = self.cloth.origin[None]
        for i in range(self.cloth.n_verts):
            # pins are skipped on purpose: a pinned particle never moves
            if self.cloth.verts_is_fixed[i] == 0:
                d = origin + self.cloth.verts[i] - center
                dist = d.norm()
                if dist < radius:
                    normal = ti.Vector([0.0, 1.0, 0.0], dt=ti.f64)
                    if dist > 1e-12:
                        normal = d / dist
                    self._respond(i, center + normal * radius, normal, friction, dt)

    @ti.kernel
    def _collide_cube(self, half_extent: ti.f64, friction: ti.f64, dt: ti.f64):
        self.n_collided[None] = 0
        center = self.obstacle_center[None]
        origin = self.cloth.origin[None]
        for i in range(self.cloth.n_verts):
            # pins are skipped here too
            if self.cloth.verts_is_fixed[i] == 0:
                p = origin + self.cloth.verts[i]
                d = p - center
                if ti.abs(d[0]) < half_extent and ti.abs(d[1]) < half_extent and ti.abs(d[2]) < half_extent:
                    # axis of minimum penetration
                    depth = half_extent - ti.abs(d)
                    axis = 0
                    best = depth[0]
                    for k in ti.static(range(1, 3)):
                        if depth[k] < best:
                            best = depth[k]
                            axis = k
                    normal = ti.Vector([0.0, 0.0, 0.0], dt=ti.f64)
                    for k in ti.static(range(3)):
                        if k == axis:
                            normal[k] = ti.select(d[k] >= 0.0, 1.0, -1.0)
                    self._respond(i, p + normal * best, normal, friction, dt)
