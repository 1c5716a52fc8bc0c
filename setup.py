"""Setup configuration for headrec."""

from setuptools import setup, find_packages

setup(
    name="headrec",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "typer>=0.9.0",
        "rich>=13.0.0",
        "python-dotenv>=1.0.0",
        "psutil>=5.9.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "headrec=headrec.cli:app",
        ],
    },
    python_requires=">=3.8",
)
