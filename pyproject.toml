[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "polywatch"
version = "0.1.0"
description = "Balance and position refresh loops, order book recording and scalp analysis for Polymarket BTC up/down markets"
requires-python = ">=3.10"
dependencies = [
    "redis>=5.0.1",
    "websockets",
]
keywords = [
    "polymarket",
    "prediction-markets",
    "order-book",
    "trading",
    "bitcoin",
    "redis",
    "sqlite",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Framework :: AsyncIO",
    "Intended Audience :: Financial and Insurance Industry",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Office/Business :: Financial :: Investment",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[project.scripts]
poly-orderbook-report = "polywatch.orderbook_report:main"
poly-scalp-analyze = "polywatch.scalp_analyze:main"

[tool.hatch.build.targets.wheel]
packages = ["polywatch"]

[tool.hatch.build.targets.sdist]
include = [
    "polywatch",
    "tests",
    "pyproject.toml",
]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
