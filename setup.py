from setuptools import setup, find_packages

setup(
    name="voice2action",
    version="0.1.0",
    description="Voice command pipeline: speech to structured, context-resolved actions",
    author="",
    python_requires=">=3.9",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "numpy>=1.21.0",
        "rich>=12.5.0",
        "pydantic>=2.0.0",
        "pyyaml>=6.0.0",
        "pypubsub>=4.0.3",
        "aiohttp>=3.8.0",
        "tenacity>=8.2.0,<9.1.3",
        "tzdata",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "voice2action=voice2action.main:main",
        ],
    },
)
