[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "gononymous"
version = "0.1.0"
description = "An anonymous imageboard with a small S3-style object store for its images"
requires-python = ">=3.10"
keywords = ["imageboard", "message-board", "anonymous", "object-storage", "s3", "wsgi"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Web Environment",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: Dynamic Content :: Message Boards",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
]
dependencies = [
    "werkzeug>=3.0",
    "jinja2>=3.1",
    "requests>=2.31",
]

[project.optional-dependencies]
test = [
    "pytest>=7.4",
    "responses>=0.24",
]

[project.scripts]
gononymous = "gononymous.board.web:main"
triple-s = "gononymous.storage.server:main"

[tool.hatch.build.targets.wheel]
packages = ["gononymous"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
