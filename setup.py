# File: varflow/setup.py
# Location: varflow/varflow/setup.py
"""
Setup script for varflow.

This file configures how the package is built, installed, and what
dependencies are required.
"""

import os
from setuptools import setup, find_packages

# Load version from version.py without importing the module
version = {}
with open(os.path.join("varflow", "version.py")) as f:
    exec(f.read(), version)

# Read the README for the long description
this_dir = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_dir, "README.md"), encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="varflow",
    version=version["__version__"],
    description="Germline variant calling from paired-end reads on a small dataflow engine.",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=[
        "pandas",
    ],
    extras_require={"test": ["pytest"]},
    entry_points={"console_scripts": ["varflow=varflow.cli:main"]},
    include_package_data=True,
    package_data={"varflow": ["config.json"]},
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: POSIX :: Linux",
    ],
)
