#!/usr/bin/env python3

from pathlib import Path

from setuptools import find_namespace_packages, setup


def requires(text):
    return [line.strip() for line in text.splitlines() if line.strip()]


setup(
    name         = "roomkey",
    version      = "0.1.0",
    author       = "roomkey authors & contributors",
    keywords     = "e2ee room key encryption chat messaging library",

    description                   = "Per-room end-to-end encryption keys",
    long_description              = Path("README.md").read_text(),
    long_description_content_type = "text/markdown",

    packages         = find_namespace_packages(include=["roomkey*"]),
    python_requires  = ">=3.9, <4",
    install_requires = requires("""
        aiohttp           >= 3.7.3,  < 4
        aiopath           >= 0.5.4
        backoff           >= 1.10.0
        loguru            >= 0.5.3,  < 1
        pycryptodomex     >= 3.10.1, < 4
        pydantic          >= 2.0,    < 3
        rich              >= 12.0
        sortedcollections >= 1.2.1,  < 3
        unpaddedbase64    >= 2.1.0,  < 3
        yarl              >= 1.6.3,  < 2
    """),
    extras_require = {
        "dev": requires("""
            aioresponses   >= 0.7.2
            aiohttp        < 3.14
            pytest         >= 6.2.1
            pytest-asyncio >= 0.17.0
        """),
    },

    classifiers=[
        "Natural Language :: English",
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Communications :: Chat",
        "Topic :: Security :: Cryptography",

        ("License :: OSI Approved :: "
         "GNU Lesser General Public License v3 or later (LGPLv3+)"),

        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
