from setuptools import setup, find_packages

setup(
    name="hydro_ai_impact",
    version="1.0.0",
    description="Deterministic streamflow intelligence and AI water-footprint equivalents",
    author="EOX Vantage",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.10",
    install_requires=[
        "requests>=2.28.0",
        "pandas>=1.5.0",
        "numpy>=1.23.0",
        "pytz>=2022.7",
        "pyyaml>=6.0",
        "pydantic>=2.0",
        "pydantic-settings>=2.2",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
)
