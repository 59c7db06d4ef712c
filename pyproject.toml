[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "evccs"
version = "0.1.0"
description = "Vehicle-side CCS charging logic: connection management, HomePlug SLAC and SDP retries, modem discovery, basic AC charging and charge port hardware control."
requires-python = ">=3.10"
dependencies = []
keywords = ["ccs", "ev-charging", "homeplug", "slac", "control-pilot", "proximity-pilot"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Embedded Systems",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["evccs"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
