from setuptools import setup, find_packages

setup(
    name="voicerelay",
    version="1.0.0",
    description="TCP chat / voice-note relay with group support and a UDP live-voice relay",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "colorama",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "voicerelay-server = voicerelay.server:main",
            "voicerelay-client = voicerelay.client:main",
        ],
    },
    python_requires=">=3.10",
)
