from setuptools import find_packages, setup

setup(
    name="deckhand",
    version="0.1.0",
    packages=find_packages(
        include=[
            "deckhand_common",
            "deckhand_common.*",
            "deckhand_controller",
            "deckhand_controller.*",
            "deckhand_server",
            "deckhand_server.*",
            "deckhand_client",
            "deckhand_client.*",
            "deckhand_admin",
            "deckhand_admin.*",
        ]
    ),
    install_requires=[
        "requests>=2.31.0",
        "fastapi>=0.104.0",
        "uvicorn>=0.24.0",
        "click>=8.1.0",
        "docker>=7.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-xdist>=3.3.0",
            "httpx>=0.25.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "deckhand=deckhand_client.cli:main",
            "deckhand-server=deckhand_server.__main__:main",
            "deckhand-admin=deckhand_admin.cli:cli",
        ],
    },
    python_requires=">=3.11",
)
