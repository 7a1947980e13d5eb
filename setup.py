#!/usr/bin/env python
#
# Copyright (c) 2024 blobrelay developers
# This software is distributed under the terms of the MIT License.
#

import os
from setuptools import setup, find_packages

__version__ = None
VERSION_FILE = os.path.join(os.path.dirname(__file__), "blobrelay", "_version.py")
exec(open(VERSION_FILE).read())  # Adds __version__ to globals

with open("README.md", "r") as fh:
    long_description = fh.read()

args = dict(
    name="blobrelay",
    version=__version__,
    description="Chunked blob transfer over lossy publish/subscribe transports with a request/response fallback.",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["blobrelay", "blobrelay.*"]),
    package_data={"blobrelay": ["py.typed"]},
    python_requires=">=3.8",
    install_requires=[
        "aiohttp ~= 3.8",
    ],
    extras_require={
        "testing": [
            "pytest ~= 7.1",
            "pytest-asyncio >= 0.18",
            "coverage ~= 6.3",
        ],
    },
    author="blobrelay developers",
    license="MIT",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries",
        "Topic :: System :: Networking",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Framework :: AsyncIO",
    ],
    keywords="blob transfer fragmentation reassembly mqtt asyncio",
    zip_safe=False,
)

setup(**args)
