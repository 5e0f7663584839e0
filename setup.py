"""
Setup script for dirqueue package
"""
from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8", errors="ignore") as fh:
    long_description = fh.read()

setup(
    name="dirqueue",
    version="1.0.0",
    description="A crash-tolerant job queue kept in a directory tree, with atomic-rename state transitions",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Operating System :: POSIX",
    ],
    python_requires=">=3.10",
    install_requires=[
        "click>=8.1.0",
        "tabulate>=0.9.0",
        "structlog>=23.1.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "dirqueue=dirqueue.cli:main",
        ],
    },
)
