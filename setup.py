from pathlib import Path

from setuptools import find_namespace_packages, setup


def load_requirements() -> list[str]:
    req_path = Path(__file__).parent / "requirements.txt"
    lines = req_path.read_text(encoding="utf-8").splitlines()
    return [
        line.strip()
        for line in lines
        if line.strip() and not line.strip().startswith("#")
    ]


setup(
    name="medflash",
    version="0.1.0",
    description="Turn medical PDFs and diagrams into annotated Anki flashcards",
    packages=find_namespace_packages(include=["medflash", "medflash.*"]),
    python_requires=">=3.10",
    install_requires=load_requirements(),
    extras_require={
        "test": ["pytest", "pytest-asyncio", "httpx"],
    },
    entry_points={
        "console_scripts": [
            "medflash=medflash.__main__:main",
        ]
    },
)
