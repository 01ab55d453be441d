import argparse
import logging
import taichi as ti
import numpy as np
from ti_sim_param import SimParam, INTEGRATORS
from ti_cloth_mesh import ClothMesh
from ti_cloth_solver import ClothSolver
from ti_rigid import Sphere, Cube

logger = logging.getLogger(__name__)

OBSTACLES = ('none', 'sphere', 'cube')

@ti.data_oriented
class ClothRender:
    """float32 world-space copy of the cloth for GGUI."""

    def __init__(self, cloth):
        self.cloth = cloth
        n = max(cloth.n_verts, 1)
        self.verts = ti.Vector.field(3, ti.f32, n)
        self.vnormals = ti.Vector.field(3, ti.f32, n)
        self.vcolors = ti.Vector.field(3, ti.f32, n)
        # checkerboard from the texture coordinates
        uv = cloth.tex_coords()
        checker = (np.floor(uv[:, 0] * 8) + np.floor(-uv[:, 1] * 8)) % 2
        colors = np.where(checker[:, None] == 0, [0.22, 0.72, 0.52], [1.0, 0.334, 0.52])
        self.vcolors.from_numpy(colors.astype(np.float32))

    @ti.kernel
    def flush(self):
        for i in range(self.cloth.n_verts):
            self.verts[i] = ti.cast(self.cloth.origin[None] + self.cloth.verts[i], ti.f32)
            self.vnormals[i] = ti.cast(self.cloth.vnormals[i], ti.f32)


class UI:
    def __init__(self, sim_param, obstacle='sphere', apply_constraints=True):
        self.sim_param = sim_param
        self.cloth = ClothMesh(sim_param)
        self.solver = ClothSolver(self.cloth, sim_param)
        self.render_cloth = ClothRender(self.cloth)
        self.obstacles = {
            'none': None,
            'sphere': Sphere(center=(0.0, 6.0, 0.0), radius=1.0, friction=0.8),
            'cube': Cube(center=(0.0, 6.0, 0.0), half_extent=1.0, friction=0.8),
        }
        self.obstacle_name = obstacle
        self.apply_constraints = apply_constraints
        self.draw_lines = False

        # window and camera
        self.window = ti.ui.Window('ti_cloth', (800, 800))
        self.camera = ti.ui.Camera()
        self.camera.position(0.0, 10.0, 30.0)
        self.camera.lookat(0.0, 8.0, 0.0)
        self.camera.up(0, 1, 0)
        self.camera.fov(45)

        # drag state per mouse button: cursor position at press, or None
        self.drag_start = {ti.ui.LMB: None, ti.ui.RMB: None}
        self.cursor = (0.0, 0.0)
        self.wind_scale = 15.0
        self.should_exit = False

        # initial kick
        self.solver.add_force((10.0, 40.0, 20.0))

    @property
    def obstacle(self):
        return self.obstacles[self.obstacle_name]

    def render(self):
        while self.window.running and not self.should_exit:
            self.update_event()
            self.solver.update(self.obstacle, self.apply_constraints)
            self.update_canvas()
            self.window.show()

    def update_canvas(self):
        canvas = self.window.get_canvas()
        canvas.set_background_color((50.0 / 255, 50.0 / 255, 60.0 / 255))

        # lights and camera
        scene = self.window.get_scene()
        scene.set_camera(self.camera)
        scene.point_light((10, 30, 30), (1, 1, 1))
        scene.ambient_light((0.2, 0.2, 0.2))

        self.render_cloth.flush()
        if self.draw_lines:
            scene.lines(self.render_cloth.verts, width=1.0, indices=self.cloth.line_indices, color=(0.9, 0.6, 0.3))
        else:
            scene.mesh(self.render_cloth.verts, self.cloth.indices, self.render_cloth.vnormals,
                       per_vertex_color=self.render_cloth.vcolors, two_sided=True)
        body = self.obstacle
        if body is not None:
            scene.mesh(body.verts, body.indices, body.vnormals, color=(0.6, 0.5, 0.8))

        canvas.scene(scene)

    def update_event(self):
        if self.window.get_event(ti.ui.PRESS):
            self.key_pressed(self.window.event.key)

        last = self.cursor
        self.cursor = self.window.get_cursor_pos()
        moved = np.hypot(self.cursor[0] - last[0], self.cursor[1] - last[1]) > 1e-7
        for button, handler in ((ti.ui.LMB, self.blow_uniform), (ti.ui.RMB, self.blow_local)):
            if not self.window.is_pressed(button):
                self.drag_start[button] = None
            elif self.drag_start[button] is None:
                self.drag_start[button] = self.cursor
            elif moved:
                wind = self._wind(self.drag_start[button], self.cursor)
                if wind is not None:
                    handler(wind, self.cursor)

    def key_pressed(self, key):
        if key == ti.ui.ESCAPE:
            self.should_exit = True
        elif key in ('r', 'R'):
            self.solver.reset()
        elif key in ('c', 'C'):
            self.apply_constraints = not self.apply_constraints
            logger.info('stretch constraints %s', 'on' if self.apply_constraints else 'off')
        elif key in ('o', 'O'):
            self.obstacle_name = OBSTACLES[(OBSTACLES.index(self.obstacle_name) + 1) % len(OBSTACLES)]
            logger.info('obstacle: %s', self.obstacle_name)
        elif key in ('l', 'L'):
            self.draw_lines = not self.draw_lines

    def _wind(self, start, pt):
        direction = np.array([pt[0] - start[0], pt[1] - start[1], 0.0])
        norm = np.linalg.norm(direction)
        if norm < 1e-7:
            return None
        return direction / norm * self.wind_scale

    def blow_uniform(self, wind, pt):
        self.solver.add_force(wind)

    def blow_local(self, wind, pt):
        # gust centred on the cursor, weighted by distance in texture space
        uv = self.cloth.tex_coords()
        dist = np.hypot(uv[:, 0] - pt[0], -uv[:, 1] - (1.0 - pt[1]))
        weights = np.clip(1.0 - dist / 0.25, 0.0, 1.0)
        for i in np.nonzero(weights)[0]:
            self.solver.add_force_to_particle(int(i), wind * weights[i])


def main(argv=None):
    parser = argparse.ArgumentParser(description='mass-spring cloth simulation')
    parser.add_argument('--integrator', choices=INTEGRATORS, default='verlet')
    parser.add_argument('--obstacle', choices=OBSTACLES, default='sphere')
    parser.add_argument('--arch', choices=('cpu', 'gpu'), default='cpu')
    parser.add_argument('--no-constraints', action='store_true')
    parser.add_argument('--verbose', action='store_true')
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format='%(asctime)s %(name)s %(levelname)s %(message)s')
    ti.init(arch=ti.gpu if args.arch == 'gpu' else ti.cpu, default_fp=ti.f64)

    ui = UI(SimParam(integrator=args.integrator), obstacle=args.obstacle,
            apply_constraints=not args.no_constraints)
    ui.render()


if __name__ == "__main__":
    main()
