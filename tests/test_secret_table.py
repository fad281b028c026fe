import pytest

from spotbridge.errors import SecretUnavailable, UpstreamError
from spotbridge.secret_table import FALLBACK_SECRETS, SecretTable, parse_secret_payload


def test_seeded_with_fallback_versions():
    table = SecretTable()
    assert table.all_versions() == {13, 14, 61}
    assert table.get(61) == FALLBACK_SECRETS[61]


def test_ensure_version_defaults_to_pinned_version_not_maximum():
    table = SecretTable()
    table.merge({"99": [1, 2, 3]})
    assert table.ensure_version() == 61


def test_seeded_only_with_version_61():
    table = SecretTable({61: FALLBACK_SECRETS[61]})
    assert table.ensure_version(None) == 61
    assert table.all_versions() == {61}


def test_ensure_version_with_explicit_request():
    table = SecretTable()
    assert table.ensure_version(13) == 13
    with pytest.raises(SecretUnavailable):
        table.ensure_version(7)


def test_ensure_version_when_default_missing():
    table = SecretTable({13: FALLBACK_SECRETS[13]})
    with pytest.raises(SecretUnavailable):
        table.ensure_version()


def test_empty_seed_is_rejected():
    with pytest.raises(SecretUnavailable, match="at least one"):
        SecretTable({})


def test_get_missing_version():
    with pytest.raises(SecretUnavailable):
        SecretTable().get(1000)


def test_merge_inserts_and_overwrites_but_never_deletes():
    table = SecretTable()

    assert table.merge({"14": [1, 2, 3], "70": [4, 5, 6]}) is True
    assert table.get(14) == bytes([1, 2, 3])
    assert table.get(70) == bytes([4, 5, 6])
    assert table.all_versions() == {13, 14, 61, 70}

    assert table.merge({"70": [4, 5, 6]}) is False


@pytest.mark.parametrize(
    "payload",
    [
        ["not", "a", "dict"],
        {"v61": [1, 2]},
        {"61": "abc"},
        {"61": [1, 256]},
        {"61": [1, True]},
    ],
)
def test_invalid_payloads_are_rejected(payload):
    table = SecretTable()
    with pytest.raises(ValueError):
        table.merge(payload)
    assert table.all_versions() == {13, 14, 61}


def test_parse_secret_payload():
    assert parse_secret_payload({"5": [0, 255]}) == {5: bytes([0, 255])}


@pytest.mark.asyncio
async def test_refresh_from_remote_merges_payload():
    table = SecretTable()

    async def loader():
        return {"62": [10, 20, 30]}

    assert await table.refresh_from_remote(loader) is True
    assert table.get(62) == bytes([10, 20, 30])


@pytest.mark.asyncio
async def test_refresh_failure_keeps_fallback_versions():
    table = SecretTable()

    async def loader():
        raise UpstreamError("Failed to download secrets: 503", status=503)

    assert await table.refresh_from_remote(loader) is False
    assert table.all_versions() == {13, 14, 61}
    assert table.ensure_version() == 61


@pytest.mark.asyncio
async def test_refresh_with_invalid_payload_is_swallowed():
    table = SecretTable()

    async def loader():
        return {"latest": [1]}

    assert await table.refresh_from_remote(loader) is False
    assert table.all_versions() == {13, 14, 61}
