import taichi as ti
import numpy as np
from ti_base_mesh import BaseMesh

@ti.data_oriented
class RigidBody(BaseMesh):
    """Static obstacle with a render mesh. Only the center may move."""

    def __init__(self, data_verts, data_triangles, center, friction):
        self._local_verts = np.asarray(data_verts, dtype=np.float64)
        self.center = np.array(center, dtype=np.float64)
        self.friction = float(friction)
        super().__init__(self._local_verts + self.center, data_triangles)

    def set_center(self, center):
        self.center = np.array(center, dtype=np.float64)
        self.verts.from_numpy((self._local_verts + self.center).astype(np.float32))


@ti.data_oriented
class Sphere(RigidBody):
    def __init__(self, center=(0.0, 6.0, 0.0), radius=1.0, friction=0.8, n_parallels=24, n_meridians=24):
        if radius <= 0.0:
            raise ValueError('sphere radius must be positive, got %r' % radius)
        self.radius = float(radius)
        data_verts, data_triangles = self._calc_mesh(self.radius, n_parallels, n_meridians)
        super().__init__(data_verts, data_triangles, center, friction)

    @staticmethod
    def _calc_mesh(radius, n_parallels, n_meridians):
        # top vertex, n_parallels rings of n_meridians, bottom vertex
        data_verts = [(0.0, radius, 0.0)]
        cycle_interval = radius * 2.0 / (n_parallels + 1)
        radian_interval = 2.0 * np.pi / n_meridians
        y = radius
        for _ in range(n_parallels):
            y -= cycle_interval
            xz_len = radius * np.sqrt(max(0.0, 1.0 - (y / radius) ** 2))
            for j in range(n_meridians):
                data_verts.append((xz_len * np.sin(j * radian_interval), y, xz_len * np.cos(j * radian_interval)))
        data_verts.append((0.0, -radius, 0.0))
        top, bottom = 0, len(data_verts) - 1

        def ring(i, j):
            return 1 + i * n_meridians + j % n_meridians

        data_triangles = []
        for j in range(n_meridians):
            data_triangles.append((ring(0, j), ring(0, j + 1), top))
        for i in range(n_parallels - 1):
            for j in range(n_meridians):
                data_triangles.append((ring(i, j), ring(i + 1, j), ring(i, j + 1)))
                data_triangles.append((ring(i + 1, j + 1), ring(i, j + 1), ring(i + 1, j)))
        for j in range(n_meridians):
            data_triangles.append((bottom, ring(n_parallels - 1, j + 1), ring(n_parallels - 1, j)))
        return np.array(data_verts), np.array(data_triangles, dtype=np.int32)

    def __repr__(self):
        return 'Sphere(center=%s, radius=%g, friction=%g)' % (self.center.tolist(), self.radius, self.friction)


@ti.data_oriented
class Cube(RigidBody):
    """Axis-aligned box given by its center and half extent."""

    def __init__(self, center=(0.0, 6.0, 0.0), half_extent=1.0, friction=0.8):
        if half_extent <= 0.0:
            raise ValueError('cube half extent must be positive, got %r' % half_extent)
        self.half_extent = float(half_extent)
        h = self.half_extent
        data_verts = np.array([
            (-h, -h, -h), (h, -h, -h), (h, h, -h), (-h, h, -h),
            (-h, -h, h), (h, -h, h), (h, h, h), (-h, h, h),
        ])
        data_triangles = np.array([
            (0, 2, 1), (0, 3, 2),  # -z
            (4, 5, 6), (4, 6, 7),  # +z
            (0, 4, 7), (0, 7, 3),  # -x
            (1, 2, 6), (1, 6, 5),  # +x
            (0, 1, 5), (0, 5, 4),  # -y
            (3, 6, 2), (3, 7, 6),  # +y
        ], dtype=np.int32)
        super().__init__(data_verts, data_triangles, center, friction)

    def __repr__(self):
        return 'Cube(center=%s, half_extent=%g, friction=%g)' % (self.center.tolist(), self.half_extent, self.friction)
