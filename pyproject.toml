[build-system]
requires = ["setuptools>=64"]
build-backend = "setuptools.build_meta"

[project]
name = "wattlearn"
version = "2.15.0"
description = "Battery and power-meter readings with a self-learning power model for Linux systems"
requires-python = ">=3.10"
dependencies = []
keywords = ["power", "battery", "sysfs", "acpi", "energy", "monitoring", "linux"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
wattlearn = "wattlearn.cli:main"

[tool.setuptools.packages.find]
include = ["wattlearn*"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
