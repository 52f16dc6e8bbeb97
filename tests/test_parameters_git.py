"""Tests for parameters/git.py.

The repository tests drive a real git executable against a local
repository and are skipped when git is not installed.
"""

from pathlib import Path

import pytest
import yaml

from conftest import CATALOG_DATA, git, requires_git
from rc_configurator.devices.schema import DeviceSchema
from rc_configurator.parameters.git import (
    GitConfigurationSource,
    parse_ls_remote,
    run_git,
)
from rc_configurator.parameters.source import ConfigurationError

LS_REMOTE_OUTPUT = (
    "1111111111111111111111111111111111111111\trefs/heads/master\n"
    "2222222222222222222222222222222222222222\trefs/heads/3.x.x-maintenance\n"
    "3333333333333333333333333333333333333333\trefs/tags/3.4.0\n"
    "4444444444444444444444444444444444444444\trefs/tags/3.4.0^{}\n"
    "5555555555555555555555555555555555555555\trefs/tags/3.3.2\n"
    "garbage line\n"
)


@pytest.fixture
def remote_repo(tmp_path: Path) -> Path:
    """A local repository with a parameter catalog on master."""
    repo = tmp_path / "remote"
    repo.mkdir()
    git(["init"], repo)
    git(["checkout", "-b", "master"], repo)
    (repo / "parameters.yaml").write_text(yaml.safe_dump(CATALOG_DATA))
    git(["add", "parameters.yaml"], repo)
    git(["commit", "-m", "Add catalog"], repo)
    return repo


class TestParseLsRemote:
    """Tests for parse_ls_remote."""

    def test_branches_and_tags(self) -> None:
        refs = parse_ls_remote(LS_REMOTE_OUTPUT)
        assert refs["branches"] == ["3.x.x-maintenance", "master"]
        assert refs["tags"] == ["3.3.2", "3.4.0"]

    def test_empty_output(self) -> None:
        assert parse_ls_remote("") == {"branches": [], "tags": []}


class TestRunGit:
    """Tests for run_git error mapping."""

    def test_missing_executable(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            run_git(["status"], git_path="/nonexistent/git")
        assert exc_info.value.code == "source_unavailable"

    @requires_git
    def test_failing_command(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="git rev-parse failed"):
            run_git(["rev-parse", "HEAD"], cwd=tmp_path)


class TestReadCatalog:
    """Tests for reading the catalog from a checkout."""

    def test_reads_yaml(self, tmp_path: Path) -> None:
        (tmp_path / "parameters.yaml").write_text(yaml.safe_dump(CATALOG_DATA))
        source = GitConfigurationSource("unused", tmp_path)
        assert source.read_catalog(tmp_path)["version"] == "3.4.0"

    def test_missing_catalog(self, tmp_path: Path) -> None:
        source = GitConfigurationSource("unused", tmp_path)
        with pytest.raises(ConfigurationError) as exc_info:
            source.read_catalog(tmp_path)
        assert exc_info.value.code == "source_unavailable"

    def test_malformed_catalog(self, tmp_path: Path) -> None:
        (tmp_path / "parameters.json").write_text("{not json")
        source = GitConfigurationSource("unused", tmp_path)
        with pytest.raises(ConfigurationError) as exc_info:
            source.read_catalog(tmp_path)
        assert exc_info.value.code == "invalid_catalog"


@requires_git
class TestGitConfigurationSource:
    """Tests against a local repository."""

    @pytest.mark.asyncio
    async def test_clone_and_resolve(
        self, remote_repo: Path, tmp_path: Path, tx_device: DeviceSchema
    ) -> None:
        source = GitConfigurationSource(str(remote_repo), tmp_path / "cache")
        resolved = await source.resolve(tx_device, {"power": "250mW"})
        assert resolved["power"] == "250mW"
        assert (tmp_path / "cache" / ".git").is_dir()

    @pytest.mark.asyncio
    async def test_refresh_fetches_new_commits(
        self, remote_repo: Path, tmp_path: Path, tx_device: DeviceSchema
    ) -> None:
        source = GitConfigurationSource(str(remote_repo), tmp_path / "cache")
        await source.catalog()

        updated = dict(CATALOG_DATA, version="3.5.0")
        (remote_repo / "parameters.yaml").write_text(yaml.safe_dump(updated))
        git(["commit", "-am", "Bump catalog"], remote_repo)

        source.refresh()
        catalog = await source.catalog()
        assert catalog.version == "3.5.0"

    @pytest.mark.asyncio
    async def test_unknown_ref(self, remote_repo: Path, tmp_path: Path) -> None:
        source = GitConfigurationSource(
            str(remote_repo), tmp_path / "cache", ref="does-not-exist"
        )
        with pytest.raises(ConfigurationError) as exc_info:
            await source.catalog()
        assert exc_info.value.code == "source_unavailable"

    @pytest.mark.asyncio
    async def test_list_refs(self, remote_repo: Path, tmp_path: Path) -> None:
        git(["tag", "3.4.0"], remote_repo)
        source = GitConfigurationSource(str(remote_repo), tmp_path / "cache")
        refs = await source.list_refs()
        assert "master" in refs["branches"]
        assert refs["tags"] == ["3.4.0"]
