from setuptools import find_packages, setup

setup(
    name="kova",
    version="0.1.0",
    packages=find_packages(
        include=[
            "kova_common",
            "kova_common.*",
            "kova_persistence",
            "kova_persistence.*",
            "kova_builder",
            "kova_builder.*",
            "kova_server",
            "kova_server.*",
            "kova_client",
            "kova_client.*",
            "kova_admin",
            "kova_admin.*",
        ]
    ),
    package_data={"kova_builder": ["templates/*.j2"]},
    install_requires=[
        "requests>=2.31.0",
        "fastapi>=0.104.0",
        "uvicorn[standard]>=0.24.0",
        "aiosqlite>=0.19.0",
        "click>=8.1.0",
        "jinja2>=3.1.0",
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
            "kova=kova_client.cli:main",
            "kova-server=kova_server.__main__:main",
            "kova-admin=kova_admin.cli:cli",
        ],
    },
    python_requires=">=3.11",
)
