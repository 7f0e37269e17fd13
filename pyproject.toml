[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ptcloud"
version = "0.1.0"
description = "Point cloud storage and file formats: hcloud headers and tree index, tiled point databases, PLY reading, typed point fields."
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = ["point cloud", "lidar", "ply", "hcloud", "point database"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Science/Research",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Visualization",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["ptcloud"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
