"""Tests for the project metadata in pyproject.toml."""

import tomllib
from pathlib import Path

from rc_configurator import __version__

ROOT = Path(__file__).resolve().parent.parent


def load_project() -> dict:
    with open(ROOT / "pyproject.toml", "rb") as f:
        return tomllib.load(f)["project"]


class TestProjectMetadata:
    """Tests for the [project] table."""

    def test_version_matches_package(self) -> None:
        assert load_project()["version"] == __version__

    def test_referenced_files_exist(self) -> None:
        project = load_project()
        readme = project.get("readme")
        if readme is not None:
            path = readme if isinstance(readme, str) else readme["file"]
            assert (ROOT / path).is_file()
            assert path.lower().startswith("readme")

    def test_console_script_targets_cli(self) -> None:
        assert load_project()["scripts"] == {"rcconf": "rc_configurator.cli:app"}
