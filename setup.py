from setuptools import setup

with open("huepanel/version.py") as f:
    exec(f.read())

setup(
    name="huepanel",
    version=__version__,  # type: ignore # noqa: F821
    description="Session, credential and Hive authentication core for a Hue panel",
    author="",
    author_email="",
    license="GPLv3",
    packages=["huepanel", "huepanel.hive"],
    install_requires=[
        "aiohttp>=3.13",
        "asyncclick>=8.1.7",
        "boto3",
        "botocore",
        "cryptography>=1.9",
        "mashumaro>=3.11",
        "pycognito>=2024.5.1",
        "yarl",
    ],
    extras_require={
        "rich": ["rich"],
        "speedups": ["orjson"],
        "test": [
            "multidict",
            "pytest",
            "pytest-asyncio",
            "pytest-freezer",
            "pytest-mock",
        ],
    },
    python_requires=">=3.11",
    entry_points={"console_scripts": ["huepanel=huepanel.cli:cli"]},
    zip_safe=False,
)
