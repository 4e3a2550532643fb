[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "steadyhttp"
version = "0.1.0"
description = "A resilient HTTP client with retries, request validation, error classification and health monitoring"
requires-python = ">=3.10"
dependencies = [
    "httpx",
]
keywords = [
    "http",
    "client",
    "retry",
    "backoff",
    "health-check",
    "validation",
    "ssrf",
]
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
    "Topic :: Internet :: WWW/HTTP",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["steadyhttp"]

[tool.hatch.build.targets.sdist]
include = [
    "steadyhttp",
    "tests",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
