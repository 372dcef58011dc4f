from setuptools import setup, find_packages


setup(
    name="chunkdb",
    version="0.1",
    packages=find_packages(include=["chunkdb", "chunkdb.*"]),
    description="Read-only extractor for .chunkdb patch chunk containers.",
    author="vercingetorx",
    install_requires=[
        "pycryptodomex>=3.23.0",
    ],
    entry_points={
        "console_scripts": [
            "chunkdb=chunkdb.cli:main",
        ]
    },
)
