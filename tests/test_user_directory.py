"""Unit tests for the in-memory user directory."""

import pytest

from freereads.core.errors import AppError, ErrorKind
from freereads.services.user_directory import InMemoryUserDirectory, _dummy_hash


@pytest.mark.asyncio
async def test_register_assigns_distinct_ids() -> None:
    users = InMemoryUserDirectory()

    first = await users.register("a@freereads.test", "passphrase one")
    second = await users.register("b@freereads.test", "passphrase two")

    assert first.id != second.id
    assert first.role == "user"
    assert await users.get(first.id) == first


@pytest.mark.asyncio
async def test_duplicate_email_is_rejected_case_insensitively() -> None:
    users = InMemoryUserDirectory()
    users.add_user("user-1", "reader@freereads.test", "passphrase one")

    with pytest.raises(AppError) as exc_info:
        await users.register("Reader@Freereads.test", "passphrase two")

    assert exc_info.value.kind is ErrorKind.EMAIL_TAKEN
    assert await users.authenticate("reader@freereads.test", "passphrase one") is not None


@pytest.mark.asyncio
async def test_unknown_user_id() -> None:
    assert await InMemoryUserDirectory().get("missing") is None


@pytest.mark.asyncio
async def test_dummy_hash_is_built_once_on_first_unknown_email() -> None:
    _dummy_hash.cache_clear()
    users = InMemoryUserDirectory()
    users.add_user("user-1", "reader@freereads.test", "passphrase one")

    assert _dummy_hash.cache_info().currsize == 0

    assert await users.authenticate("nobody@freereads.test", "guess") is None
    assert await users.authenticate("someone@freereads.test", "guess") is None

    info = _dummy_hash.cache_info()
    assert info.currsize == 1
    assert info.misses == 1
