import taichi as ti
import numpy as np

@ti.data_oriented
class BaseMesh:
    def __init__(self, data_verts, data_triangles, dtype=ti.f32):
        data_verts = np.asarray(data_verts, dtype=np.float64).reshape(-1, 3)
        data_triangles = np.asarray(data_triangles, dtype=np.int32).reshape(-1, 3)
        self.dtype = dtype
        self.n_verts = len(data_verts)
        self.n_tris = len(data_triangles)
        # taichi fields cannot be empty
        self.verts = ti.Vector.field(3, dtype, max(self.n_verts, 1))
        self.tris = ti.Vector.field(3, ti.i32, max(self.n_tris, 1))
        self.indices = ti.field(ti.i32, max(self.n_tris, 1) * 3)
        self.vnormals = ti.Vector.field(3, dtype, max(self.n_verts, 1))
        self._normal_weights = ti.field(dtype, max(self.n_verts, 1))
        self._load(data_verts, data_triangles)

    def _load(self, data_verts, data_triangles):
        np_dtype = np.float64 if self.dtype == ti.f64 else np.float32
        if self.n_verts > 0:
            self.verts.from_numpy(data_verts.astype(np_dtype))
        if self.n_tris > 0:
            self.tris.from_numpy(data_triangles)
            self.indices.from_numpy(data_triangles.reshape(-1))
        self.update_normal()

    def vertices(self):
        return self.verts.to_numpy()[:self.n_verts]

    def normals(self):
        return self.vnormals.to_numpy()[:self.n_verts]

    @ti.kernel
    def update_normal(self):
        for i in range(self.n_verts):
            self._normal_weights[i] = 0.0
            self.vnormals[i] = ti.Vector([0.0, 0.0, 0.0])
        for i in range(self.n_tris):
            tri = self.tris[i]
            a = self.verts[tri[0]]
            b = self.verts[tri[1]]
            c = self.verts[tri[2]]
            dir = (b-a).cross(c-a)
            area = dir.norm()
            self.vnormals[tri[0]] += dir
            self.vnormals[tri[1]] += dir
            self.vnormals[tri[2]] += dir
            self._normal_weights[tri[0]] += area
            self._normal_weights[tri[1]] += area
            self._normal_weights[tri[2]] += area
        for i in range(self.n_verts):
            w = self._normal_weights[i]
            if w != 0.0:
                n = self.vnormals[i]
                if n.norm() > 0.0:
                    self.vnormals[i] = n / n.norm()
