from setuptools import setup, find_packages
from pathlib import Path

readme_path = Path(__file__).parent / "README.md"
if readme_path.exists():
    long_description = readme_path.read_text(encoding="utf-8")
else:
    long_description = "A declarative action engine: sandboxed expressions, step recipes and transactional connectors."

setup(
    name="serverokey",
    version="0.1.0",
    description="A declarative action engine with sandboxed expressions and transactional connectors",
    long_description=long_description,
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.9",
    install_requires=[
        "networkx>=3.0",
        "pyyaml>=6.0",
        "jinja2>=3.0",  # Sandboxed expression evaluation
        "jmespath>=1.0.0",
        "jsonschema>=4.20.0",
        "fsspec>=2023.1.0",
        "typer>=0.9.0",
        "pydantic>=2.0.0",  # Manifest and settings models
        "httpx>=0.24.0",  # http:get steps
        "passlib>=1.7.4",  # Password hashing namespace
    ],
    entry_points={
        "console_scripts": [
            "serverokey=serverokey.cli:main",
        ],
    },
    extras_require={
        "dev": [
            "pytest",
            "pytest-asyncio>=0.21.0",
            "coverage",
            "hypothesis",
        ],
    },
)
