#!/usr/bin/env python

# Copyright (c) Twisted Matrix Laboratories.
# See LICENSE for details.

"""
Setuptools installer for txrosterdb.
"""

import pathlib
import re

import setuptools

setuptools.setup(
    name="txrosterdb",
    version="1.0.0",
    description=(
        "Relational storage of XMPP users, rosters, vCards and private XML "
        "for Twisted servers"
    ),
    # Munge links of the form `NEWS <NEWS.rst>`_ to point at the appropriate
    # location in the source tree so that they function when the long
    # description is displayed on PyPI.
    long_description=re.sub(
        r"`([^`]+)\s+<(?!https?://)([^>]+)>`_",
        r"`\1`",
        pathlib.Path("README.rst").read_text(encoding="utf8"),
        flags=re.I,
    ),
    long_description_content_type="text/x-rst",
    license="MIT",
    python_requires=">=3.8",
    package_dir={"": "src"},
    packages=setuptools.find_packages("src"),
    install_requires=[
        "Twisted >= 22.10.0",
        "zope.interface >= 5",
        "attrs >= 21.3.0",
        "constantly >= 15.1",
        "incremental >= 22.10.0",
    ],
    extras_require={
        "postgresql": ["psycopg2 >= 2.8"],
        "mysql": ["mysqlclient >= 2.0"],
    },
    entry_points={
        "console_scripts": [
            "txrosterdb-initschema = txrosterdb.scripts.initschema:main",
        ],
    },
    zip_safe=False,
    classifiers=[
        "Framework :: Twisted",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Topic :: Communications :: Chat",
        "Topic :: Database",
    ],
)
