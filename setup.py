from setuptools import find_packages, setup

setup(
    name="sdkci",
    version="0.1.0",
    packages=find_packages(
        include=[
            "sdkci_common",
            "sdkci_common.*",
            "sdkci_client",
            "sdkci_client.*",
            "sdkci_engine",
            "sdkci_engine.*",
            "sdkci_combine",
            "sdkci_combine.*",
            "sdkci_action",
            "sdkci_action.*",
        ]
    ),
    install_requires=[
        "requests>=2.31.0",
        "click>=8.1.0",
        "PyYAML>=6.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-xdist>=3.3.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "sdkci=sdkci_action.cli:cli",
        ],
    },
    python_requires=">=3.11",
)
