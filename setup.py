"""
Setup script for sqlalchemy-bulk-upsert.

This file is provided for backward compatibility with older pip versions.
The package configuration is primarily defined in pyproject.toml.
"""

from setuptools import setup

# The actual configuration is in pyproject.toml
setup()
