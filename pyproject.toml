[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "ztrelay"
version = "0.2.0"
description = "TCP relay that forwards ZeroTier UDP traffic for clients behind restrictive networks"
requires-python = ">=3.10"
dependencies = []
keywords = ["zerotier", "relay", "proxy", "tcp", "udp", "tunnel"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
ztrelay = "ztrelay.relay:main"
ztrelay-latency = "ztrelay.latency:main"

[tool.hatch.build.targets.wheel]
packages = ["ztrelay"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
