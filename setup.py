# setup.py
from setuptools import setup, find_packages

setup(
    name="zux_ledger",
    version="0.1.0",
    packages=find_packages(include=["zux_ledger", "zux_ledger.*"]),
    install_requires=[
        "msgpack",            # canonical encoding
        "PyNaCl",             # ed25519
        "pycryptodome",       # keccak
        "psutil",             # monitoring
        "prometheus_client>=0.20",  # metrics, start_http_server returns (server, thread)
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "zux-simulate=zux_ledger.simulate:main",
        ],
    },
)
