[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "miracle"
version = "1.0.0"
description = "Wifi-Display/Miracast helpers: wpa_supplicant control messages and bus, UIBC input packets, and string utilities"
requires-python = ">=3.10"
dependencies = []
keywords = ["miracast", "wifi-display", "wpa_supplicant", "p2p", "uibc", "control-socket"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
miracle-uibcctl = "miracle.uibc:main"

[tool.hatch.build.targets.wheel]
packages = ["miracle"]

[tool.hatch.build.targets.sdist]
include = ["miracle", "tests", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 88
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
