[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lwsclient"
version = "0.1.0"
description = "WebSocket, HTTP and raw TCP clients driven by a background service thread"
requires-python = ">=3.10"
keywords = ["websocket", "http", "socket", "client", "feed"]
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
    "Topic :: Internet :: WWW/HTTP",
    "Topic :: Software Development :: Libraries :: Python Modules",
]
dependencies = [
    "websocket-client",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
lwsclient = "lwsclient.app:main"

[tool.hatch.build.targets.wheel]
packages = ["lwsclient"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
