[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "k8smetrics"
version = "0.1.0"
description = "Building blocks for collecting Kubernetes node, API server and control plane metrics"
requires-python = ">=3.10"
dependencies = [
    "requests",
]
keywords = ["kubernetes", "metrics", "monitoring", "control-plane", "discovery"]
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
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["k8smetrics"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
