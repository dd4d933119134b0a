from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest

pytest_plugins = [
    "depresolver.pytest",
]


@pytest.fixture
def make_project(tmp_path: Path) -> Callable[..., Path]:
    """Create a local project directory with a static pyproject.toml."""

    def make(name: str, version: str | None = "0.1.0", dependencies: list[str] | None = None, **extra: str) -> Path:
        root = tmp_path / "projects" / name
        root.mkdir(parents=True, exist_ok=True)
        lines = ["[project]", f'name = "{name}"']
        if version is not None:
            lines.append(f'version = "{version}"')
        deps = ", ".join(f'"{dep}"' for dep in dependencies or [])
        lines.append(f"dependencies = [{deps}]")
        lines.extend(f'{key.replace("_", "-")} = "{value}"' for key, value in extra.items())
        root.joinpath("pyproject.toml").write_text("\n".join(lines) + "\n")
        return root

    return make
