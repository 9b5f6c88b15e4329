[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "poseexpr"
version = "0.1.0"
description = "Face mesh geometry tools: EPnP pose estimation, rotation helpers, vertex normals and shading, ASCII PLY input and output"
requires-python = ">=3.10"
keywords = ["face", "pose", "epnp", "pnp", "mesh", "normals", "shading", "ply"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Image Recognition",
]
dependencies = [
    "numpy",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["poseexpr"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
