[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "docspace"
version = "0.1.0"
description = "Service layer for a documentation platform: space members, file uploads, tags, versions, search and publication models"
requires-python = ">=3.10"
dependencies = [
    "pillow",
]
keywords = ["documentation", "cms", "search", "versioning", "tags"]
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
    "Topic :: Internet :: WWW/HTTP :: Dynamic Content :: Content Management System",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["docspace"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
