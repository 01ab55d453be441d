import logging
import taichi as ti
import numpy as np
from ti_base_mesh import BaseMesh
from ti_sim_param import SPRING_STRUCTURAL, SPRING_SHEAR, SPRING_FLEXION

logger = logging.getLogger(__name__)

# directional spring kinds used by the per-particle adjacency map
STRUCTURAL_ROW = 0       # -
STRUCTURAL_COLUMN = 1    # |
SHEAR_LEFT_TO_RIGHT = 2  # \
SHEAR_RIGHT_TO_LEFT = 3  # /
FLEXION_ROW = 4          # --
FLEXION_COLUMN = 5       # ||
SPRING_KINDS = (STRUCTURAL_ROW, STRUCTURAL_COLUMN, SHEAR_LEFT_TO_RIGHT,
                SHEAR_RIGHT_TO_LEFT, FLEXION_ROW, FLEXION_COLUMN)

_KIND_CATEGORY = {
    STRUCTURAL_ROW: SPRING_STRUCTURAL,
    STRUCTURAL_COLUMN: SPRING_STRUCTURAL,
    SHEAR_LEFT_TO_RIGHT: SPRING_SHEAR,
    SHEAR_RIGHT_TO_LEFT: SPRING_SHEAR,
    FLEXION_ROW: SPRING_FLEXION,
    FLEXION_COLUMN: SPRING_FLEXION,
}

@ti.data_oriented
class ClothMesh(BaseMesh):
    """Particle grid of a cloth together with its springs and faces.

    Particles are stored row-major (``row * cols + col``) in flat fields and
    positions are relative to ``sim_param.origin``. Springs and faces hold
    particle indices, so the particle fields are also the render vertex buffer.
    """

    def __init__(self, sim_param):
        self.sim_param = sim_param
        self.rows = sim_param.rows
        self.cols = sim_param.cols
        self.stretch_ratio = sim_param.stretch_ratio
        data_verts = self._calc_verts()
        data_triangles = self._calc_triangles()
        data_edges, data_kinds = self._calc_edges()
        super().__init__(data_verts, data_triangles, dtype=ti.f64)

        # particle store
        n = max(self.n_verts, 1)
        self.verts_prev = ti.Vector.field(3, ti.f64, n)
        self.verts_vel = ti.Vector.field(3, ti.f64, n)
        self.verts_force = ti.Vector.field(3, ti.f64, n)
        self.verts_force_ext = ti.Vector.field(3, ti.f64, n)
        self.verts_mass = ti.field(ti.f64, n)
        self.verts_is_fixed = ti.field(ti.i32, n)
        self.verts_uv = ti.Vector.field(2, ti.f64, n)
        self.origin = ti.Vector.field(3, ti.f64, ())
        self.origin[None] = sim_param.origin

        # springs
        self.n_edges = len(data_edges)
        m = max(self.n_edges, 1)
        self.edges = ti.Vector.field(2, ti.i32, m)
        self.edges_type = ti.field(ti.i32, m)
        self.edges_stiffness = ti.field(ti.f64, m)
        self.edges_length_rest = ti.field(ti.f64, m)
        self.edges_length_max = ti.field(ti.f64, m)
        self.line_indices = ti.field(ti.i32, m * 2)

        self.reset()

    # compute via python, the topology only changes on reset
    def _calc_verts(self):
        data_verts = np.zeros((self.rows * self.cols, 3), dtype=np.float64)
        for r in range(self.rows):
            for c in range(self.cols):
                data_verts[r * self.cols + c] = (c / self.sim_param.density, 0.0, r / self.sim_param.density)
        return data_verts

    def _calc_uvs(self):
        data_uvs = np.zeros((self.rows * self.cols, 2), dtype=np.float64)
        for r in range(self.rows):
            for c in range(self.cols):
                data_uvs[r * self.cols + c] = (c / max(self.cols - 1, 1), -r / max(self.rows - 1, 1))
        return data_uvs

    def _calc_triangles(self):
        data_triangles = []
        for r in range(self.rows - 1):
            for c in range(self.cols - 1):
                i00 = r * self.cols + c
                i01 = i00 + 1
                i10 = i00 + self.cols
                i11 = i10 + 1
                data_triangles.append((i00, i10, i01))
                data_triangles.append((i11, i01, i10))
        return np.array(data_triangles, dtype=np.int32).reshape(-1, 3)

    def _calc_edges(self):
        data_edges = []
        data_kinds = []
        def link(r0, c0, r1, c1, kind):
            data_edges.append((r0 * self.cols + c0, r1 * self.cols + c1))
            data_kinds.append(kind)
        for r in range(self.rows):
            for c in range(self.cols):
                if c < self.cols - 1:
                    link(r, c, r, c + 1, STRUCTURAL_ROW)
                if r < self.rows - 1:
                    link(r, c, r + 1, c, STRUCTURAL_COLUMN)
                if r < self.rows - 1 and c < self.cols - 1:
                    link(r, c, r + 1, c + 1, SHEAR_LEFT_TO_RIGHT)
                    link(r, c + 1, r + 1, c, SHEAR_RIGHT_TO_LEFT)
                if c < self.cols - 2:
                    link(r, c, r, c + 2, FLEXION_ROW)
                if r < self.rows - 2:
                    link(r, c, r + 2, c, FLEXION_COLUMN)
        return (np.array(data_edges, dtype=np.int32).reshape(-1, 2),
                np.array(data_kinds, dtype=np.int32))

    def _calc_adjacency(self, data_edges, data_kinds):
        # csr layout: springs of particle i are adj_springs[adj_ptr[i]:adj_ptr[i+1]],
        # sorted by kind then spring index
        entries = []
        for s, (a, b) in enumerate(data_edges):
            entries.append((a, data_kinds[s], s))
            entries.append((b, data_kinds[s], s))
        entries.sort()
        adj_ptr = np.zeros(self.n_verts + 1, dtype=np.int32)
        for p, _, _ in entries:
            adj_ptr[p + 1] += 1
        adj_ptr = np.cumsum(adj_ptr, dtype=np.int32)
        adj_kinds = np.array([k for _, k, _ in entries], dtype=np.int32)
        adj_springs = np.array([s for _, _, s in entries], dtype=np.int32)
        return adj_ptr, adj_kinds, adj_springs

    def _stiffness_of(self, kind):
        category = _KIND_CATEGORY[kind]
        if category == SPRING_STRUCTURAL:
            return self.sim_param.structural_stiffness
        if category == SPRING_SHEAR:
            return self.sim_param.shear_stiffness
        return self.sim_param.bending_stiffness

    def reset(self):
        """Rebuild particles, springs and faces from the grid configuration and re-pin."""
        data_verts = self._calc_verts()
        data_edges, data_kinds = self._calc_edges()
        data_triangles = self._calc_triangles()

        self.verts.from_numpy(data_verts)
        self.verts_prev.from_numpy(data_verts)
        self.verts_vel.fill(0.0)
        self.verts_force.fill(0.0)
        self.verts_force_ext.fill(0.0)
        self.verts_mass.fill(self.sim_param.particle_mass)
        self.verts_is_fixed.fill(0)
        self.verts_uv.from_numpy(self._calc_uvs())

        if self.n_tris > 0:
            self.tris.from_numpy(data_triangles)
            self.indices.from_numpy(data_triangles.reshape(-1))

        if self.n_edges > 0:
            self.edges.from_numpy(data_edges)
            self.line_indices.from_numpy(data_edges.reshape(-1))
            self.edges_type.from_numpy(np.array([_KIND_CATEGORY[k] for k in data_kinds], dtype=np.int32))
            self.edges_stiffness.from_numpy(np.array([self._stiffness_of(k) for k in data_kinds], dtype=np.float64))
            # rest lengths are captured before the pins move
            self._compute_edges_length()
        self.adj_ptr, self.adj_kinds, self.adj_springs = self._calc_adjacency(data_edges, data_kinds)

        self._pin_verts()
        self.update_normal()
        logger.info('cloth built: %d particles, %d springs, %d faces, %d pinned',
                    self.n_verts, self.n_edges, self.n_tris, len(self.sim_param.pins))

    def _pin_verts(self):
        positions = self.verts.to_numpy()
        for (r, c), offset in zip(self.sim_param.pins, self.sim_param.pin_offsets()):
            i = self.index(r, c)
            positions[i] += offset
            self.verts_is_fixed[i] = 1
        self.verts.from_numpy(positions)
        self.verts_prev.from_numpy(positions)

    @ti.func
    def edge_vector(self, s):
        e = self.edges[s]
        return self.verts[e[0]] - self.verts[e[1]]

    @ti.kernel
    def _compute_edges_length(self):
        for s in range(self.n_edges):
            rest = self.edge_vector(s).norm()
            self.edges_length_rest[s] = rest
            self.edges_length_max[s] = rest * self.stretch_ratio

    @ti.kernel
    def update_normal(self):
        # faces sharing a particle overwrite each other in face order
        ti.loop_config(serialize=True)
        for i in range(self.n_tris):
            tri = self.tris[i]
            a = self.verts[tri[0]]
            b = self.verts[tri[1]]
            c = self.verts[tri[2]]
            dir = (b-a).cross(c-a)
            length = dir.norm()
            if length > 0.0:
                dir = dir / length
                self.vnormals[tri[0]] = dir
                self.vnormals[tri[1]] = dir
                self.vnormals[tri[2]] = dir

    # adjacency and refinement
    def springs_of(self, index, kind=None):
        self._check_index(index)
        begin, end = self.adj_ptr[index], self.adj_ptr[index + 1]
        springs = self.adj_springs[begin:end]
        if kind is not None:
            springs = springs[self.adj_kinds[begin:end] == kind]
        return springs.tolist()

    def detect_refinement(self, cos_threshold=0.9):
        """Particles where the cloth bends sharper than ``cos_threshold``.

        Looks at the two structural neighbours along a row or a column and
        compares the directions of the incoming and outgoing segments. The
        mesh is not subdivided here.
        """
        positions = self.positions()
        edges = self.edges.to_numpy()[:self.n_edges]
        flagged = []
        for i in range(self.n_verts):
            for kind in (STRUCTURAL_ROW, STRUCTURAL_COLUMN):
                springs = self.springs_of(i, kind)
                if len(springs) != 2:
                    continue
                neighbours = sorted(int(edges[s][0] if edges[s][1] == i else edges[s][1]) for s in springs)
                incoming = positions[i] - positions[neighbours[0]]
                outgoing = positions[neighbours[1]] - positions[i]
                norm = np.linalg.norm(incoming) * np.linalg.norm(outgoing)
                if norm == 0.0:
                    continue
                if np.dot(incoming, outgoing) / norm < cos_threshold:
                    flagged.append(i)
                    break
        return flagged

    # accessors
    def _check_index(self, index):
        if not 0 <= index < self.n_verts:
            raise IndexError('particle index %d out of range [0, %d)' % (index, self.n_verts))

    def index(self, row, col):
        if not (0 <= row < self.rows and 0 <= col < self.cols):
            raise IndexError('grid position (%d, %d) outside %dx%d cloth' % (row, col, self.rows, self.cols))
        return row * self.cols + col

    def position(self, row, col):
        return self.positions()[self.index(row, col)]

    def positions(self):
        return self.verts.to_numpy()[:self.n_verts]

    def world_positions(self):
        return self.positions() + self.origin.to_numpy()

    def velocities(self):
        return self.verts_vel.to_numpy()[:self.n_verts]

    def forces(self):
        return self.verts_force.to_numpy()[:self.n_verts]

    def tex_coords(self):
        return self.verts_uv.to_numpy()[:self.n_verts]

    def fixed_mask(self):
        return self.verts_is_fixed.to_numpy()[:self.n_verts] != 0

    def spring_types(self):
        return self.edges_type.to_numpy()[:self.n_edges]

    def spring_pairs(self):
        return self.edges.to_numpy()[:self.n_edges]

    def rest_lengths(self):
        return self.edges_length_rest.to_numpy()[:self.n_edges]

    def max_lengths(self):
        return self.edges_length_max.to_numpy()[:self.n_edges]

    def spring_lengths(self):
        positions = self.positions()
        pairs = self.spring_pairs()
        return np.linalg.norm(positions[pairs[:, 1]] - positions[pairs[:, 0]], axis=1)

    def spring_endpoints(self):
        return self.world_positions()[self.spring_pairs()]

    def set_position(self, index, position):
        """Move a free particle without giving it velocity."""
        self._check_index(index)
        if self.verts_is_fixed[index]:
            raise ValueError('particle %d is pinned' % index)
        self.verts[index] = [float(p) for p in position]
        self.verts_prev[index] = [float(p) for p in position]

    def set_velocity(self, index, velocity):
        self._check_index(index)
        self.verts_vel[index] = [float(v) for v in velocity]
