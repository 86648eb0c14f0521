from setuptools import setup, find_packages

setup(
    name="shelfask",
    version="1.0.0",
    description="Grounded question answering over a personal book library",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn>=0.27",
        "pydantic>=2.0",
        "openai>=1.0",
        "duckdb>=0.10",
        "typer>=0.9",
        "rich>=13.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "httpx>=0.25",
        ],
    },
    entry_points={
        'console_scripts': [
            'shelfask=shelfask.cli:main',
        ],
    },
)
