from setuptools import setup, find_packages

setup(
    name="faucetproxy",
    version="0.1.0",
    packages=find_packages(include=["faucet", "faucet.*"]),
    python_requires=">=3.11",
    install_requires=[
        "fastapi>=0.115",
        "starlette>=0.40",
        "pydantic>=2.7",
        "pydantic-settings>=2.3",
        "httpx>=0.27",
        "redis>=5.0",
        "uvicorn[standard]>=0.30",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "respx>=0.21",
        ],
    },
)
