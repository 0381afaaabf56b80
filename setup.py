import os
import re
from codecs import open

from setuptools import find_packages
from setuptools import setup

# Based on https://github.com/pypa/sampleproject/blob/main/setup.py
# and https://python-packaging-user-guide.readthedocs.org/

here = os.path.abspath(os.path.dirname(__file__))

with open(os.path.join(here, "README.md"), encoding="utf-8") as f:
    long_description = f.read()
long_description_content_type = "text/markdown"

with open(os.path.join(here, "rproxy/version.py")) as f:
    match = re.search(r'VERSION = "(.+?)"', f.read())
    assert match
    VERSION = match.group(1)

setup(
    name="rproxy",
    version=VERSION,
    description="A reverse proxy relay with mutually authenticated TLS on either side.",
    long_description=long_description,
    long_description_content_type=long_description_content_type,
    license="Apache-2.0",
    classifiers=[
        "License :: OSI Approved :: Apache Software License",
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Operating System :: POSIX",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: Implementation :: CPython",
        "Topic :: Security",
        "Topic :: Internet :: Proxy Servers",
        "Topic :: System :: Networking",
    ],
    packages=find_packages(
        include=[
            "rproxy",
            "rproxy.*",
        ]
    ),
    include_package_data=True,
    entry_points={
        "console_scripts": [
            "rproxy = rproxy.tools.main:rproxy",
        ],
    },
    python_requires=">=3.10",
    # https://packaging.python.org/en/latest/discussions/install-requires-vs-requirements/#install-requires
    # It is not considered best practice to use install_requires to pin dependencies to specific versions.
    install_requires=[
        "cryptography>=42.0",
        "pyOpenSSL>=23.2",
        "ruamel.yaml>=0.16,<0.19",
    ],
    extras_require={
        "dev": [
            "pytest-asyncio>=0.23,<0.25",
            "pytest-timeout>=1.3.3",
            "pytest>=7.0,<9",
        ],
    },
)
