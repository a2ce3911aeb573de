from setuptools import setup, find_packages

setup(
    name="promptlang",
    version="0.1.0",
    packages=find_packages(include=["promptlang", "promptlang.*"]),
    package_data={"promptlang": ["grammar.lark"]},
    install_requires=[
        "lark",
        "pydantic>=2.0",
        "networkx>=3.0",
        "loguru>=0.7",
        "openai",
        "anthropic",
        "cohere",
        "requests",
        "opentelemetry-api",
        "opentelemetry-sdk",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "promptlang=promptlang.cli:main",
        ],
    },
    python_requires=">=3.9",
)
