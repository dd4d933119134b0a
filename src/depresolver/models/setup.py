from __future__ import annotations

from configparser import ConfigParser
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from depresolver.compat import tomllib
from depresolver.termui import logger


@dataclass
class Setup:
    """
    Abstraction of a local project's metadata, read without building it.
    """

    name: str | None = None
    version: str | None = None
    install_requires: list[str] = field(default_factory=list)
    extras_require: dict[str, list[str]] = field(default_factory=dict)
    python_requires: str | None = None
    summary: str | None = None

    def update(self, other: Setup) -> None:
        for f in fields(self):
            other_field = getattr(other, f.name)
            if other_field:
                setattr(self, f.name, other_field)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_directory(cls, dir: Path) -> Setup:
        return _SetupReader.read_from_directory(dir)


class _SetupReader:
    """
    Read the static metadata from pyproject.toml and setup.cfg.
    Values in pyproject.toml win.
    """

    @classmethod
    def read_from_directory(cls, directory: Path) -> Setup:
        result = Setup()

        for filename, file_reader in [
            ("setup.cfg", cls.read_setup_cfg),
            ("pyproject.toml", cls.read_pyproject_toml),
        ]:
            filepath = directory / filename
            if not filepath.exists():
                continue

            result.update(file_reader(filepath))

        return result

    @staticmethod
    def read_pyproject_toml(file: Path) -> Setup:
        try:
            with file.open("rb") as fp:
                data = tomllib.load(fp)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.debug("Failed to read %s: %s", file, e)
            return Setup()
        metadata = data.get("project", {})
        if "version" in metadata.get("dynamic", []):
            logger.debug("Version of the project at %s is dynamic, it can't be read statically", file.parent)
        return Setup(
            name=metadata.get("name"),
            summary=metadata.get("description"),
            version=metadata.get("version"),
            install_requires=metadata.get("dependencies", []),
            extras_require=metadata.get("optional-dependencies", {}),
            python_requires=metadata.get("requires-python"),
        )

    @staticmethod
    def read_setup_cfg(file: Path) -> Setup:
        parser = ConfigParser()
        parser.read(str(file))

        def _lines(section: str, option: str) -> list[str]:
            return [line.strip() for line in parser.get(section, option).splitlines() if line.strip()]

        result = Setup()
        if parser.has_option("metadata", "name"):
            result.name = parser.get("metadata", "name")
        if parser.has_option("metadata", "version"):
            version = parser.get("metadata", "version")
            # attr: and file: directives need the code, leave them unset
            if not version.startswith(("attr:", "file:")):
                result.version = version
        if parser.has_option("metadata", "description"):
            result.summary = parser.get("metadata", "description")
        if parser.has_option("options", "install_requires"):
            result.install_requires = _lines("options", "install_requires")
        if parser.has_option("options", "python_requires"):
            result.python_requires = parser.get("options", "python_requires")
        if parser.has_section("options.extras_require"):
            result.extras_require = {
                group: _lines("options.extras_require", group) for group in parser.options("options.extras_require")
            }
        return result
