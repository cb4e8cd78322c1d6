#!/usr/bin/env python3
"""
cacheflow – setup configuration
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

Adaptive, statistics-driven caching for resolvers, with SQLite and Redis
backends, a metrics viewer and Prometheus monitoring.
"""

import re
from pathlib import Path

from setuptools import setup, find_packages

ROOT = Path(__file__).parent
README = ROOT / "README.md"

# Read version from package without importing it
_init = (ROOT / "cacheflow" / "__init__.py").read_text(encoding="utf-8")
version = re.search(r'^__version__ = "([^"]+)"', _init, re.MULTILINE).group(1)

# Read long description
long_description = ""
if README.exists():
    long_description = README.read_text(encoding="utf-8")

# --------------------------------------------------------------------------- #
# Production dependencies
# --------------------------------------------------------------------------- #
INSTALL_REQUIRES = [
    # Framework
    "fastapi>=0.110.0,<1.0.0",
    "uvicorn[standard]>=0.29.0,<1.0.0",
    "pydantic>=2.6.0,<3.0.0",
    "pydantic-settings>=2.1.0,<3.0.0",

    # Storage
    "aiosqlite>=0.19.0,<1.0.0",
    "redis>=5.0.1,<7.0.0",

    # Monitoring
    "prometheus-client>=0.19.0,<1.0.0",
    "psutil>=5.9.0,<8.0.0",

    # Utilities
    "python-dotenv>=1.0.0,<2.0.0",
    "PyYAML>=6.0.1,<7.0.0",
    "rich>=13.6.0,<15.0.0",
    "typer>=0.9.0,<1.0.0",
    "orjson>=3.9.0,<4.0.0",
]

TEST_REQUIRES = [
    "pytest>=7.4.0,<9.0.0",
    "pytest-asyncio>=0.23.0,<1.0.0",
    "pytest-cov>=4.1.0,<6.0.0",
    "httpx>=0.26.0,<1.0.0",
]

# Development dependencies
DEV_REQUIRES = TEST_REQUIRES + [
    # Code Quality
    "ruff>=0.4.0,<1.0.0",
    "mypy>=1.10.0,<2.0.0",
    "types-PyYAML>=6.0.0",
    "types-psutil>=5.9.0",

    # Development Tools
    "pre-commit>=3.7.0,<4.0.0",
]

# --------------------------------------------------------------------------- #
# Setup configuration
# --------------------------------------------------------------------------- #
setup(
    name="cacheflow",
    version=version,
    description="Adaptive, statistics-driven caching for resolvers",
    long_description=long_description,
    long_description_content_type="text/markdown",

    # Package configuration
    packages=find_packages(
        include=["cacheflow", "cacheflow.*"],
        exclude=["tests*", "docs*", "examples*", "scripts*"]
    ),
    include_package_data=True,
    package_data={
        "cacheflow": ["py.typed", "logging.yaml"],
    },

    # Python version requirement
    python_requires=">=3.11",

    # Dependencies
    install_requires=INSTALL_REQUIRES,
    extras_require={
        "dev": DEV_REQUIRES,
        "test": TEST_REQUIRES,
    },

    # Console scripts
    entry_points={
        "console_scripts": [
            "cacheflow=cacheflow.cli:main",
        ],
    },

    # Classifiers
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Framework :: AsyncIO",
        "Framework :: FastAPI",
        "Framework :: Pydantic",
        "Framework :: Pytest",
        "Topic :: Database",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: System :: Monitoring",
        "Typing :: Typed",
    ],

    # Keywords
    keywords=[
        "cache", "graphql", "resolver", "redis", "sqlite", "adaptive",
        "metrics", "async", "performance"
    ],

    # License
    license="Apache-2.0",

    zip_safe=False,
    platforms=["any"],
)
