"""Unit tests for the file-backed session repository."""

import json
import os
from unittest.mock import patch

import pytest

from agent_reactor.managers.identity_resolver import project_hash
from agent_reactor.models.sessions import SessionRecord
from agent_reactor.repositories.sessions import SessionRepository
from agent_reactor.utils.exceptions import InvalidAccountError, SessionStoreError


@pytest.fixture
def repository(tmp_path):
    """Create repository in a temporary state directory."""
    return SessionRepository(tmp_path / "sessions")


def make_record(project, account="default", container_id="c" * 64):
    return SessionRecord(
        account=account,
        project_path=str(project),
        project_hash=project_hash(str(project)),
        container_name=f"v2-claude-reactor-base-amd64-{project_hash(str(project))}-{account}",
        container_id=container_id,
    )


@pytest.mark.asyncio
async def test_get_missing_returns_none(repository, project):
    """Test loading a record that was never saved."""
    assert await repository.get("default", str(project)) is None


def test_record_paths_distinct_per_account(repository, project):
    """Test that every account maps to its own record file."""
    paths = {repository.record_path(account, str(project)) for account in ("a", "b", "default")}

    assert len(paths) == 3
    assert repository.record_path(None, str(project)) == repository.record_path(
        "default", str(project)
    )


@pytest.mark.parametrize("account", ["a/../b", "../x", "my acct"])
def test_record_path_rejects_invalid_account(repository, project, account):
    """Test that an account cannot point outside its own record file."""
    with pytest.raises(InvalidAccountError):
        repository.record_path(account, str(project))


@pytest.mark.asyncio
async def test_save_and_get(repository, project):
    """Test that a saved record loads back intact."""
    record = make_record(project)

    path = await repository.save(record)
    loaded = await repository.get("default", str(project))

    assert path.name == f"default-{record.project_hash}.json"
    assert loaded == record
    assert len(loaded.session_token) == 16


@pytest.mark.asyncio
async def test_none_account_is_default(repository, project):
    """Test that a missing account maps to the default account record."""
    await repository.save(make_record(project))

    assert await repository.get(None, str(project)) is not None


@pytest.mark.asyncio
async def test_records_isolated_per_account(repository, project):
    """Test that accounts do not share a record."""
    await repository.save(make_record(project, account="work", container_id="w" * 64))
    await repository.save(make_record(project, account="home", container_id="h" * 64))

    work = await repository.get("work", str(project))
    home = await repository.get("home", str(project))

    assert work.container_id == "w" * 64
    assert home.container_id == "h" * 64


@pytest.mark.asyncio
async def test_save_overwrites_atomically(repository, project):
    """Test that saving replaces the file and leaves no temporary files behind."""
    await repository.save(make_record(project, container_id="a" * 64))
    await repository.save(make_record(project, container_id="b" * 64))

    loaded = await repository.get("default", str(project))

    assert loaded.container_id == "b" * 64
    assert sorted(os.listdir(repository.state_dir)) == [
        f"default-{project_hash(str(project))}.json"
    ]


@pytest.mark.asyncio
async def test_failed_write_keeps_previous_record(repository, project):
    """Test that a failed rename leaves the old record untouched."""
    await repository.save(make_record(project, container_id="a" * 64))

    with patch("agent_reactor.repositories.sessions.os.replace", side_effect=OSError("disk")):
        with pytest.raises(SessionStoreError):
            await repository.save(make_record(project, container_id="b" * 64))

    loaded = await repository.get("default", str(project))
    assert loaded.container_id == "a" * 64
    assert len(os.listdir(repository.state_dir)) == 1


@pytest.mark.asyncio
async def test_corrupt_record_raises(repository, project):
    """Test that an unparseable record is reported."""
    path = repository.record_path("default", str(project))
    path.parent.mkdir(parents=True)
    path.write_text("{not json")

    with pytest.raises(SessionStoreError):
        await repository.get("default", str(project))


@pytest.mark.asyncio
async def test_delete(repository, project):
    """Test deleting a record."""
    await repository.save(make_record(project))

    assert await repository.delete("default", str(project)) is True
    assert await repository.delete("default", str(project)) is False
    assert await repository.get("default", str(project)) is None


@pytest.mark.asyncio
async def test_list_all_skips_corrupt_files(repository, project, tmp_path):
    """Test listing records ignores unreadable files."""
    other = tmp_path / "other"
    other.mkdir()
    await repository.save(make_record(project))
    await repository.save(make_record(other))
    (repository.state_dir / "garbage.json").write_text(json.dumps({"account": "x"}))

    records = await repository.list_all()

    assert {r.project_path for r in records} == {str(project), str(other)}


@pytest.mark.asyncio
async def test_list_all_without_directory(repository):
    """Test listing before anything was saved."""
    assert await repository.list_all() == []
