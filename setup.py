"""
ClipCutter build script.

Usage:
    # Development install:
    pip install -e .

    # With test runner:
    pip install -e ".[test]"

Installs the `clipcutter` command.
"""

from setuptools import setup, find_namespace_packages

APP_NAME = "clipcutter"

setup(
    name=APP_NAME,
    version="1.0.0",
    description="Download, trim and crop online videos with yt-dlp and ffmpeg",
    packages=find_namespace_packages(include=["clipcutter", "clipcutter.*"]),
    py_modules=["main"],
    install_requires=[
        "requests>=2.28.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "clipcutter = main:main",
        ],
    },
)
