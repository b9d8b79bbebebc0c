# Copyright © 2025 PoB

import re
import os
import codecs
from os import path
from io import open
from setuptools import setup, find_packages


here = path.abspath(path.dirname(__file__))

with open(path.join(here, "README.md"), encoding="utf-8") as f:
    long_description = f.read()

with codecs.open(os.path.join(here, "pob_indexer/__init__.py"), encoding="utf-8") as init_file:
    version_match = re.search(r"^__version__ = ['\"]([^'\"]*)['\"]", init_file.read(), re.M)
    if not version_match:
        raise RuntimeError("Unable to find version string in pob_indexer/__init__.py")
    version_string = version_match.group(1)


requirements = [
    # Ledger reads
    "web3>=6.15.0,<7",
    "eth-abi>=4.0.0",

    # HTTP and networking
    "aiohttp>=3.9.5",
    "httpx>=0.28.1",

    # Configuration
    "python-dotenv>=1.0.0",

    # Web framework (health endpoints)
    "fastapi>=0.110.0",
    "uvicorn>=0.38.0",
    "pydantic>=2.0.0",

    # Supabase
    "supabase>=2.0.0",
]

setup(
    name="pob_indexer",
    version=version_string,
    description="Read-only snapshot indexer for Proof-of-Builders voting and certificate contracts",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="PoB Team",
    license="MIT",
    packages=find_packages(include=['pob_indexer', 'pob_indexer.*']),
    include_package_data=True,
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={
        "test": ["pytest>=7.4.0"],
    },
    entry_points={
        "console_scripts": [
            "pob-indexer=pob_indexer.main:main",
        ]
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Topic :: Internet :: WWW/HTTP",
    ],
)
