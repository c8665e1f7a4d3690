"""
Setup script for Trend Pulse - trend detection and velocity/anomaly scoring engine.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text() if readme_file.exists() else ""

setup(
    name="trend-pulse",
    version="1.0.0",
    description="Trend detection, velocity and anomaly scoring engine",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Trend Intelligence Team",
    author_email="dev@trendintelligence.example.com",
    packages=find_packages(include=["trend_pulse", "trend_pulse.*"]),
    python_requires=">=3.11",
    install_requires=[
        # Storage
        "redis>=5.0.1",

        # Data processing
        "numpy>=1.24.0",
        "scipy>=1.11.0",
        "scikit-learn>=1.3.0",

        # Data validation
        "pydantic>=2.5.0",

        # Task queue
        "celery>=5.3.0",
        "kombu>=5.3.0",

        # Monitoring and observability
        "prometheus-client>=0.19.0",

        # Utilities
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: Text Processing :: Linguistic",
    ],
    include_package_data=True,
    zip_safe=False,
)
