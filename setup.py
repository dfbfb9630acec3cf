from setuptools import setup, find_packages

setup(
    name="wgexporter",
    version="1.0.0",
    description="Prometheus exporter for WireGuard tunnel statistics",
    license="MIT",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "typer>=0.9.0",
        "rich>=13.0.0",
        "httpx>=0.25.0",
        "pydantic>=2.0.0",
        "pyyaml>=6.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "wgexporter=wgexporter.cli:app",
        ],
    },
)
