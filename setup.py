#!/usr/bin/env python
"""Setup configuration for authcore."""

from setuptools import find_packages, setup

setup(
    name="authcore",
    version="0.1.0",
    packages=find_packages(include=["authcore", "authcore.*"]),
    python_requires=">=3.11",
    install_requires=[
        "pydantic>=2.5.0",
        "pydantic-settings>=2.0.0",
        "sqlalchemy>=2.0.23",
        "structlog>=23.2.0",
        "argon2-cffi>=23.1.0",
        "bcrypt>=4.0.1",
        "pyotp>=2.9.0",
        "qrcode>=7.4.0",
        "Pillow>=10.0.0",
        "httpx>=0.25.0",
        "geoip2>=4.7.0",
        "user-agents>=2.2.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
)
