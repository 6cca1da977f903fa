#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Setup script for RiskGuard

Installs the ``riskguard`` package: the tolerance monitor SDK and its
FastAPI router.
"""

from setuptools import setup, find_packages
from pathlib import Path

VERSION = "1.0.0"

# Read README for long description
readme_file = Path(__file__).parent / "README.md"
if readme_file.exists():
    long_description = readme_file.read_text(encoding="utf-8")
else:
    long_description = (
        "RiskGuard Tolerance Monitor - governed risk tolerance metrics, "
        "RAG status evaluation, breach escalation and residual risk"
    )

setup(
    name="riskguard",
    version=VERSION,
    description="Risk tolerance monitoring: RAG status, breach escalation and residual risk",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="RiskGuard Platform Team",
    packages=find_packages(include=["riskguard", "riskguard.*"]),
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2.5.0",
        "prometheus_client>=0.19.0",
        "fastapi>=0.110.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.3",
            "pytest-cov>=4.1.0",
            "httpx>=0.27.0",
        ],
        "dev": [
            "pytest>=7.4.3",
            "pytest-cov>=4.1.0",
            "httpx>=0.27.0",
        ],
    },
    classifiers=[
        "Development Status :: 5 - Production/Stable",
        "Intended Audience :: Financial and Insurance Industry",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    keywords="risk tolerance appetite kri breach residual",
)
