[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cbsensor"
version = "0.1.0"
description = "Endpoint sensor event model: decode binary event records to JSON, classify files, and model banning, isolation, statistics and event-queue logic"
requires-python = ">=3.10"
dependencies = []
keywords = ["sensor", "events", "monitoring", "security", "isolation", "json"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
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
cbevent-parser = "cbsensor.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["cbsensor"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
