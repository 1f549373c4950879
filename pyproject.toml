[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "panelnode"
version = "0.1.0"
description = "Node controller that keeps a proxy core's inbounds, users, limits and rules in step with a management panel"
requires-python = ">=3.10"
dependencies = []
keywords = ["proxy", "vmess", "vless", "trojan", "shadowsocks", "panel", "controller"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["panelnode"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
