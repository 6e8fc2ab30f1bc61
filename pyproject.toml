[build-system]
requires = ["setuptools>=64"]
build-backend = "setuptools.build_meta"

[project]
name = "idevkit"
version = "0.1.0"
description = "Protocol building blocks for iOS device services: AFC file access, crash reports, diagnostics, GDB remote protocol, TLS-capable device connections and debug proxy bookkeeping."
requires-python = ">=3.10"
dependencies = []
keywords = ["ios", "usbmuxd", "afc", "diagnostics", "gdb", "lldb", "crash reports", "tls"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: MacOS",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Testing",
    "Topic :: Software Development :: Debuggers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.setuptools.packages.find]
include = ["idevkit*"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
