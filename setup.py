"""Setup configuration for the InterChat Discord Bot."""

from setuptools import setup, find_packages

setup(
    name="interchat",
    version="0.0.1",
    description="A Discord bot linking channels across servers with calls and hubs",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.11",
    install_requires=[
        "py-cord",
        "aiohttp",
        "aiosqlite",
        "PyYAML",
        "python-dotenv",
        "prompt_toolkit",
        "redis>=5.0.1",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
        ],
    },
    entry_points={
        "console_scripts": [
            "interchat=interchat.main:main",
        ],
    },
)
