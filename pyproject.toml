[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "v2panel"
version = "0.1.0"
description = "Service layer for a proxy subscription panel on SQLite: plans, coupons, payment channels, nodes, routes, tickets, ledger and commissions."
requires-python = ">=3.10"
dependencies = [
    "bcrypt",
]
keywords = ["proxy", "panel", "subscription", "billing", "tickets", "sqlite"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: Database",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["v2panel"]

[tool.pytest.ini_options]
addopts = "-ra"
