[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "flagproviders"
version = "0.1.0"
description = "Feature flag providers for environment variables, Flagsmith, in-process GO Feature Flag engines and Flipt, behind one evaluation interface."
requires-python = ">=3.10"
dependencies = []
keywords = ["feature-flags", "openfeature", "flagsmith", "flipt", "toggles"]
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
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["flagproviders"]

[tool.pytest.ini_options]
addopts = "-ra"
