[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "cablekit"
version = "0.1.0"
description = "Building blocks for a real-time cable server: pub/sub hub, message encoders, metrics, JWT identification and deployment presets"
requires-python = ">=3.10"
keywords = ["websocket", "pubsub", "cable", "metrics", "prometheus", "statsd", "jwt"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Internet :: WWW/HTTP",
    "Topic :: System :: Monitoring",
]
dependencies = [
    "pyjwt",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["cablekit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
