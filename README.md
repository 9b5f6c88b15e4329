# poseexpr

Geometry tools for working with 3D face meshes: estimate a camera pose from
2D-3D point correspondences with EPnP, convert between rotation vectors and
matrices, compute vertex normals and Phong-style vertex shading, and read
and write ASCII PLY meshes. Everything is plain NumPy.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## What is inside

- `poseexpr.plyio`: `split_text` tokenises a line on spaces, commas and
  newlines; `write_ply` writes a coloured triangle mesh (colours clamped to
  0..255) and `write_ply_points` writes a point cloud, both as ASCII PLY.
- `poseexpr.epnp`: the `EPnP` solver. Give it the principal point and focal
  lengths, add correspondences with `add_correspondence`, and
  `compute_pose` returns a `PoseEstimate` named tuple of rotation matrix,
  translation and mean reprojection error (the best of three candidate
  solutions). Also `qr_solve` (Householder least squares, raising
  `SingularMatrixError` on a zero column), `mat_to_quat`, `relative_error`,
  `rotation_vector_to_matrix`, `matrix_to_rotation_vector` and
  `project_points` (pinhole projection without distortion).
- `poseexpr.mesh`: `Face` holds a `Mesh` (vertices, faces, optional colours,
  normals, texture coordinates and texture), a landmark-to-vertex map and a
  pose. It loads PLY models (`load_ply_model`, `load_ply`), builds a mesh
  from arrays (`load_mesh`), maps landmarks to nearest vertices
  (`load_ply_landmarks`), saves PLY (`save_ply`) and estimates vertex
  normals. Malformed files raise `PlyFormatError`. `StaticCamera` estimates
  focal length and translation assuming no rotation, either from all points
  or with a random-sampling consensus variant.
- `poseexpr.rendering`: `RenderParams` (pose, ambient, diffuse, light
  angles, contrast, gain, offset), `triangle_normal`,
  `triangle_normal_from_vertex`, `vertex_normals` (angle weighted) and
  `estimate_color`, which shades per-vertex texture colours.

## Example

```python
from poseexpr.epnp import EPnP

solver = EPnP(uc=320.0, vc=240.0, fu=800.0, fv=800.0)
for (x, y, z), (u, v) in zip(points_3d, points_2d):
    solver.add_correspondence(x, y, z, u, v)
rotation, translation, error = solver.compute_pose()
```

Shading a mesh:

```python
from poseexpr.rendering import RenderParams, estimate_color

colors = estimate_color(shape, texture, faces, RenderParams())
```

## What it does not do

The package has no morphable face model: it does not load model datasets,
generate shapes or textures from model coefficients, or fit pose and
expression weights to detected landmarks. It does not detect faces or
landmarks in images, and it does not rasterise meshes into images; shading
stops at per-vertex colours. There is no command-line program.