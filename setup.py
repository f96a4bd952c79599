"""Packaging for run-when.

Installs the ``run_when`` package and the ``run-when`` console script. The
version is read from ``run_when/__init__.py`` so it is defined in one place.
"""

import os
import re

from setuptools import setup, find_packages

HERE = os.path.dirname(os.path.abspath(__file__))


def get_version():
    """Return ``__version__`` from the package without importing it."""
    with open(os.path.join(HERE, "run_when", "__init__.py"), encoding="utf-8") as f:
        match = re.search(r"^__version__\s*=\s*['\"]([^'\"]+)['\"]", f.read(), re.MULTILINE)
    if not match:
        raise RuntimeError("Unable to find __version__ in run_when/__init__.py")
    return match.group(1)


def get_long_description():
    """Return README.md, or an empty string for source trees without it."""
    readme = os.path.join(HERE, "README.md")
    if not os.path.exists(readme):
        return ""
    with open(readme, encoding="utf-8") as f:
        return f.read()


setup(
    name="run-when",
    version=get_version(),
    description="Run a (debounced) command upon changes to the filesystem.",
    long_description=get_long_description(),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "watchdog>=4.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": [
            "run-when=run_when.main:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.8",
)
