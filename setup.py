################################################################################
# DOCKA-BACKUP
#
# @file:        setup.py
# @module:      setup
# @description: Setuptools configuration and CLI packaging for docka-backup.
# @repository:  https://github.com/docka-backup/docka-backup
# @version:     1.0.0
#
# ------------------------------------------------------------------------------
# MIT-Lizenz: siehe LICENSE oder https://opensource.org/licenses/MIT
# ==============================================================================
# Hinweise:
# - Python 3.12+ because restores rely on tarfile extraction filters
# - One console script; `python -m docka_backup` works as well
################################################################################

from setuptools import setup, find_packages
from pathlib import Path

# Read README for long description (optional)
readme_file = Path(__file__).parent / "README.md"
long_description = ""
if readme_file.exists():
    long_description = readme_file.read_text(encoding="utf-8")

setup(
    name="docka-backup",
    version="1.0.0",
    description="Cold backups of Docker volumes to a remote server over SSH",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/docka-backup/docka-backup",
    license="MIT",

    packages=find_packages(exclude=("tests*", "docs*", "examples*")),

    include_package_data=True,
    zip_safe=False,

    python_requires=">=3.11",

    install_requires=[
        "psutil>=5.9.0",
        "typer>=0.12.0",
        "rich>=13.0.0",
        "pydantic>=2.0.0",
        "docker>=7.0.0",
        "requests>=2.31.0",
        "paramiko>=3.4.0",
        "tenacity>=8.2.0",
        "python-dotenv>=1.0.0",
    ],

    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-cov>=3.0.0",
        ],
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=3.0.0",
            "black>=22.0.0",
            "flake8>=4.0.0",
            "mypy>=0.950",
        ],
    },

    entry_points={
        "console_scripts": [
            "docka-backup=docka_backup.cli.main:cli_main",
        ],
    },

    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Topic :: System :: Archiving :: Backup",
        "Topic :: System :: Systems Administration",
        "Topic :: Utilities",
    ],

    keywords="docker backup volumes cold-backup sftp ssh restore retention",
)
