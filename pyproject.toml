[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tserver"
version = "1.0.0"
description = "Run several long-lived applications in one process, with start and stop hooks, signal handling and graceful shutdown."
requires-python = ">=3.10"
dependencies = []
keywords = ["server", "lifecycle", "graceful-shutdown", "hooks", "signals", "context", "cancellation"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Application Frameworks",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
tserver-example = "tserver.example:main"

[tool.hatch.build.targets.wheel]
packages = ["tserver"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
strict = true
