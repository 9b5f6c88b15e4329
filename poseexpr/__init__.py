"""Face mesh geometry: EPnP pose estimation, normals and shading, ASCII PLY input and output."""

__version__ = "0.1.0"
__all__ = ["plyio", "epnp", "mesh", "rendering"]