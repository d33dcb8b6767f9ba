"""
Setup script for incremental-priority.

The incremental priority engine decides what a learner should review next:

1. Priority resolution - manual, inherited and default priorities over a
   knowledge graph
2. Priority cache - debounced, percentile-ranked snapshot of every priority
3. Queue scheduling - incremental items interleaved with ordinary cards,
   with a priority shield tracking the most important missed item

The 'prio' command is a developer tool that runs the engine against a JSON
graph snapshot.
"""

from setuptools import find_packages, setup

setup(
    name="incremental-priority",
    version="0.1.0",
    description="Priority resolution and incremental review scheduling over a knowledge graph",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["config"],
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "prio=priority_engine.cli.main:run",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "Intended Audience :: Education",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="learning spaced-repetition incremental-reading priority scheduling",
)
