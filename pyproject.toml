[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "leggedkit"
version = "0.1.0"
description = "State estimation, hardware abstraction and command shaping for quadruped robots"
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "robotics",
    "quadruped",
    "legged-robot",
    "state-estimation",
    "kalman-filter",
    "hardware-abstraction",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Science/Research",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Human Machine Interfaces",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["leggedkit"]

[tool.hatch.build.targets.sdist]
include = [
    "leggedkit",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
