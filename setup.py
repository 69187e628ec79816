"""Setup configuration for the modsbot Discord bot."""

from setuptools import setup, find_packages

setup(
    name="modsbot",
    version="0.1.0",
    description="A Discord bot for community moderation, tags and crate lookups",
    packages=find_packages(where="src", include=["modsbot", "modsbot.*"]),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "py-cord>=2.4",
        "aiohttp>=3.9",
        "aiosqlite>=0.19",
        "PyYAML>=6.0",
        "python-dotenv>=1.0",
        "prompt_toolkit>=3.0",
        "yarl>=1.9",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "modsbot=modsbot.main:main",
        ],
    },
)
