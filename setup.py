"""Setup configuration for Strongbox."""

import os
import re

from setuptools import find_packages, setup

here = os.path.abspath(os.path.dirname(__file__))

# Read version metadata without importing the package
with open(os.path.join(here, "strongbox", "__init__.py"), encoding="utf-8") as f:
    metadata = dict(re.findall(r'^__(version|author)__ = "([^"]+)"', f.read(), re.MULTILINE))

# Get the long description from the README file
with open(os.path.join(here, "README.md"), encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="strongbox-cli",
    version=metadata["version"],
    description="Encrypted backups, restores and ISO 27001 style security audit logging",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author=metadata["author"],
    keywords="backup restore encryption audit compliance cli",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "click>=8.0.0",
        "pyyaml>=6.0",
        "cryptography>=3.4.0",
        "jsonschema>=4.0.0",
        "aiofiles>=23.1.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.12.0",
            "mypy>=0.991",
        ],
    },
    entry_points={
        "console_scripts": [
            "strongbox=strongbox.cli:cli",
        ],
    },
)
