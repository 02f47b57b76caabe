"""
Setup script for salesforce-pubsub-cdc
Builds the subscriber library as a wheel.
"""

from setuptools import setup, find_packages
import os

# Read requirements from file
def read_requirements():
    req_file = os.path.join(os.path.dirname(__file__), "requirements.txt")
    if os.path.exists(req_file):
        with open(req_file, 'r') as f:
            return [line.strip() for line in f if line.strip() and not line.startswith('#')]
    return []

setup(
    name="salesforce-pubsub-cdc",
    version="1.0.0",
    description="Salesforce Change Data Capture subscriber for the Pub/Sub API",
    url="https://github.com/salesforce/pub-sub-api",

    # Package configuration
    packages=find_packages(include=["salesforce_pubsub_cdc", "salesforce_pubsub_cdc.*"]),

    # Dependencies
    install_requires=read_requirements() or [
        "grpcio>=1.50.0",
        "protobuf>=4.22.0",
        "certifi>=2022.0.0",
        "avro>=1.11.0",
        "requests>=2.28.0",
        "bitstring>=4.0.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },

    # Python version requirement
    python_requires=">=3.10",

    zip_safe=False,

    # Classifiers
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],

    # Keywords for PyPI
    keywords="salesforce pubsub grpc change-data-capture streaming",

    # Project URLs
    project_urls={
        "Documentation": "https://developer.salesforce.com/docs/platform/pub-sub-api/overview",
    },
)
