from setuptools import setup

setup(
    name="greenback_guard",                    # имя пакета
    version="0.1.0",                           # версия проекта
    description="Greenback guard: fee-aware close gate, health watchdog, sandbox execution and paper tests for micro-scalping",
    author="Дмитрий",
    author_email="you@example.com",
    url="https://github.com/yourrepo/greenback_guard",
    # плоская раскладка: пакеты лежат в корне репозитория
    packages=[
        "executors",
        "monitoring",
        "risk",
        "routers",
        "schemas",
        "services",
        "src",
        "state",
        "utils",
    ],
    python_requires=">=3.11",                  # минимальная версия Python
    install_requires=[
        "fastapi>=0.111",
        "uvicorn>=0.30",
        "pydantic>=2.6",
        "httpx>=0.28",
        "pandas>=2.2",
        "numpy>=1.26",
        "python-dotenv>=1.0",
        "pyyaml>=6.0",
        "prometheus-client>=0.22",
    ],
    extras_require={
        "test": ["pytest>=8.2", "pytest-asyncio>=0.23", "asgi-lifespan>=2.1"],
        "dev": ["black", "isort", "flake8", "mypy", "pytest-cov"],
    },
    classifiers=[
        "Programming Language :: Python :: 3.11",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
    ],
    include_package_data=True,
    zip_safe=False,
)
