"""Setup script for the QIWI checkout service."""

from setuptools import setup, find_packages

setup(
    name="qiwi-checkout",
    version="1.0.0",
    description="QIWI bill checkout with payment notifications and wallet payouts",
    python_requires=">=3.10",
    packages=find_packages(include=["qiwi_checkout", "qiwi_checkout.*"]),
    install_requires=[
        line.strip()
        for line in open("requirements.txt")
        if line.strip() and not line.startswith("#") and not line.startswith("git+")
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
        ],
        "dev": [
            "black>=23.0.0",
            "isort>=5.12.0",
            "flake8>=6.0.0",
            "mypy>=1.4.0",
            "pytest-cov>=4.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "qiwi-checkout=qiwi_checkout.api.main:main",
        ]
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)
