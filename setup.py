from __future__ import annotations

from setuptools import find_packages, setup

from config.version import PROJECT_VERSION, PYTHON_REQUIRES_SPECIFIER

INSTALL_REQUIRES = [
    "beautifulsoup4>=4.12",
    "fastapi>=0.110",
    "feedparser>=6.0",
    "httpx>=0.27",
    "loguru>=0.7",
    "prometheus-client>=0.20",
    "pydantic>=2.6",
    "python-dateutil>=2.9",
    "python-dotenv>=1.0",
    "SQLAlchemy>=2.0",
    "tomli-w>=1.0",
]

EXTRAS_REQUIRE = {
    "postgres": ["psycopg2-binary>=2.9"],
    "test": [
        "hypothesis>=6.100",
        "pytest>=8.0",
    ],
}

if __name__ == "__main__":
    setup(
        name="podcatalog",
        version=PROJECT_VERSION,
        description="Podcast feed ingestion and catalog reconciliation engine",
        python_requires=PYTHON_REQUIRES_SPECIFIER,
        packages=find_packages(include=["src", "src.*", "config", "podcatalog"]),
        install_requires=INSTALL_REQUIRES,
        extras_require=EXTRAS_REQUIRE,
        entry_points={
            "console_scripts": [
                "podcatalog=podcatalog.cli:main",
                "podcatalog-config=podcatalog.config_manager:main",
            ]
        },
    )
