"""Setup configuration for ga_report"""

from setuptools import setup, find_packages

setup(
    name="ga-region-report-generator",
    version="0.1.0",
    description=(
        "CLI tool for consolidated Google Analytics reports: per-property totals, "
        "top regions and engagement benchmark across batches of properties."
    ),
    author="GA Region Report Generator Contributors",
    author_email="",
    python_requires=">=3.10",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "requests>=2.28.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "black>=22.0",
            "flake8>=4.0",
            "mypy>=0.950",
        ],
    },
    entry_points={
        "console_scripts": [
            "ga-region-report=ga_report.main:main",
        ],
    },
)
