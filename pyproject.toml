[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "flagcore"
version = "0.1.0"
description = "Feature flag evaluation, an in-memory flag store and analytics event processing"
requires-python = ">=3.10"
dependencies = []
keywords = ["feature flags", "feature toggles", "analytics", "rollout", "evaluation"]
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
    "Topic :: Software Development :: Libraries",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["flagcore"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
