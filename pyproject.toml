[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "gatewaycore"
version = "0.9.10"
description = "Building blocks of a metrics gateway: buffered forwarding, type-based loading, dimension ordering, internal metrics and key/value logging."
requires-python = ">=3.10"
dependencies = []
keywords = ["metrics", "gateway", "monitoring", "datapoints", "forwarder", "logfmt"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
gatewaycore = "gatewaycore.gateway:main"

[tool.hatch.build.targets.wheel]
packages = ["gatewaycore"]

[tool.pytest.ini_options]
addopts = "-ra"
