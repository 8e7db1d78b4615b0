"""
Setup configuration for command-module package.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text() if (this_directory / "README.md").exists() else ""

setup(
    name="command-module",
    version="0.1.0",
    description="Run verified commands on a fixed-rate schedule and forward their output to an event queue",
    long_description=long_description,
    long_description_content_type="text/markdown",

    # Package discovery
    packages=find_packages(include=["command_module", "command_module.*"]),

    # Dependencies
    install_requires=[
        "APScheduler>=3.10,<4",
        "SQLAlchemy>=2.0",
        "python-dotenv>=1.0.0",
    ],

    # Optional dependencies
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "black>=23.0.0",
            "flake8>=6.0.0",
        ],
    },

    # Python version requirement
    python_requires=">=3.8",

    # CLI entry points
    entry_points={
        "console_scripts": [
            "command-module=command_module.cli:main",
        ],
    },

    # Classification
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: System Administrators",
        "Topic :: System :: Monitoring",
        "Operating System :: POSIX",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],

    # Keywords
    keywords="scheduler command checksum monitoring events",

    include_package_data=True,
)
