from __future__ import annotations

from pathlib import Path

SRC = Path(__file__).resolve().parents[1] / "src"


def test_every_source_directory_is_a_regular_package() -> None:
    missing = [
        str(directory.relative_to(SRC))
        for directory in sorted(p for p in SRC.rglob("*") if p.is_dir() and p.name != "__pycache__")
        if any(directory.glob("*.py")) and not (directory / "__init__.py").exists()
    ]
    assert missing == []


def test_subpackages_import_without_optional_extras() -> None:
    import dowser_engine.dashboard
    import dowser_engine.utils

    assert dowser_engine.utils.__name__ == "dowser_engine.utils"
    assert dowser_engine.dashboard.__name__ == "dowser_engine.dashboard"
