[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "stark"
version = "0.1.0"
description = "Configuration sources, encoders and a merging reader, plus a small mDNS / DNS-SD service discovery toolkit"
requires-python = ">=3.11"
keywords = ["config", "configuration", "yaml", "toml", "mdns", "dns-sd", "service-discovery"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Libraries :: Application Frameworks",
    "Topic :: Internet :: Name Service (DNS)",
]
dependencies = [
    "dnspython",
    "pyyaml",
    "tomli-w",
    "xmltodict",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["stark"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
ignore_missing_imports = true
