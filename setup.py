#!/usr/bin/env python3
"""
Setup script for wsbridge, a TCP <-> WebSocket relay
"""

from setuptools import setup, find_namespace_packages

setup(
    name="wsbridge",
    version="0.1.0",
    description="Tunnel raw TCP connections over WebSocket and back",
    packages=find_namespace_packages(include=["client", "client.*", "server", "server.*", "shared", "shared.*"]),
    install_requires=[
        "websockets==15.0.1",
        "click==8.1.7",
        "typer==0.12.3",
        "rich==13.9.2",
        "PyYAML==6.0.2",
        "httpx==0.28.1",
    ],
    extras_require={
        "test": [
            "pytest==8.4.2",
            "pytest-asyncio==1.2.0",
        ],
    },
    python_requires=">=3.9",
    entry_points={
        'console_scripts': [
            'wsbridge-server=server.server:main',
            'wsbridge-client=client.cli:main',
        ],
    },
)
