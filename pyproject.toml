[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "servercore"
version = "0.1.0"
description = "Building blocks for server processes: byte buffers, locks with deadlock detection, job queues, a tiny HTTP router, schema diffing and asyncio sessions."
requires-python = ">=3.10"
dependencies = []
keywords = ["server", "jobs", "locks", "buffers", "packets", "schema", "asyncio", "http"]
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
    "Framework :: AsyncIO",
    "Topic :: Software Development :: Libraries :: Application Frameworks",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest", "pytest-asyncio"]

[tool.hatch.build.targets.wheel]
packages = ["servercore"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
