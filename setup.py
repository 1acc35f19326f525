"""
labterm - browser terminal bridge for network-emulation labs.
"""

from setuptools import setup, find_packages
from pathlib import Path

readme = Path(__file__).parent / "README.md"
long_description = readme.read_text() if readme.exists() else ""

setup(
    name="labterm",
    version="0.1.0",
    description="WebSocket terminal bridge to lab containers, VMs and network devices",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["labterm", "labterm.*"]),
    python_requires=">=3.10",
    install_requires=[
        "paramiko>=3.0.0",
        "pexpect>=4.8.0",
        "PyYAML>=6.0",
        "click>=8.0.0",
        "websockets>=13.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "labterm=labterm.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: System Administrators",
        "Operating System :: POSIX",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: System :: Networking",
        "Topic :: Terminals",
    ],
    keywords="ssh terminal websocket pty paramiko network lab containerlab",
)
