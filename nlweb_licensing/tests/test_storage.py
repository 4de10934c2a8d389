"""Tests for option stores and secret encryption."""
from __future__ import annotations

from typing import Any, List, Optional, Tuple

import psycopg2.extras
import pytest

from nlweb_licensing.app.storage import InMemoryOptionStore, SecretCipher, SecretDecryptionError
from nlweb_licensing.app.storage.crypto import mask_secret
from nlweb_licensing.app.storage.repository import PostgresOptionStore


class FakeCursor:
    def __init__(self, row: Optional[dict] = None, rowcount: int = 0, fail: bool = False) -> None:
        self.executed: List[Tuple[str, Any]] = []
        self.row = row
        self.rowcount = rowcount
        self.fail = fail
        self.closed = False

    def execute(self, sql: str, params: Any = None) -> None:
        if self.fail:
            raise RuntimeError("database unavailable")
        self.executed.append((" ".join(sql.split()), params))

    def fetchone(self) -> Optional[dict]:
        return self.row

    def close(self) -> None:
        self.closed = True


class FakeConnection:
    def __init__(self, cursor: FakeCursor) -> None:
        self._cursor = cursor
        self.commits = 0
        self.rollbacks = 0
        self.closed = False

    def cursor(self, cursor_factory: Any = None) -> FakeCursor:
        return self._cursor

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1

    def close(self) -> None:
        self.closed = True


def test_in_memory_store_returns_copies() -> None:
    store = InMemoryOptionStore({"nlweb_license_cache": {"version": 1}})

    value = store.get("nlweb_license_cache")
    value["version"] = 2

    assert store.get("nlweb_license_cache") == {"version": 1}
    assert store.get("missing", "fallback") == "fallback"


def test_in_memory_store_deletes_by_name_and_prefix() -> None:
    store = InMemoryOptionStore()
    store.set("nlweb_addon_license_a", 1)
    store.set("nlweb_addon_license_b", 2)
    store.set("nlweb_api_key", 3)

    assert store.delete("nlweb_api_key") is True
    assert store.delete("nlweb_api_key") is False
    assert store.delete_prefix("nlweb_addon_") == 2
    assert store.keys() == []


def test_cipher_round_trip_uses_fresh_nonces() -> None:
    cipher = SecretCipher("host-secret")

    first = cipher.encrypt("NLWEB-KEY-0001")
    second = cipher.encrypt("NLWEB-KEY-0001")

    assert first != second
    assert first.startswith("v1:")
    assert cipher.decrypt(first) == "NLWEB-KEY-0001"
    assert cipher.decrypt_optional(None) is None


def test_cipher_rejects_other_keys_and_tampering() -> None:
    token = SecretCipher("host-secret").encrypt("NLWEB-KEY-0001")

    with pytest.raises(SecretDecryptionError):
        SecretCipher("another-secret").decrypt(token)

    tampered = token[:-4] + ("AAAA" if not token.endswith("AAAA") else "BBBB")
    with pytest.raises(SecretDecryptionError):
        SecretCipher("host-secret").decrypt(tampered)

    with pytest.raises(SecretDecryptionError):
        SecretCipher("host-secret").decrypt("plaintext-key")


def test_mask_secret_truncates() -> None:
    assert mask_secret("NLWEB-KEY-0001") == "NLWEB-KE..."
    assert mask_secret(None) == ""


def test_postgres_get_commits_and_closes() -> None:
    cursor = FakeCursor(row={"option_value": {"addons": ["advanced_analytics"]}})
    connection = FakeConnection(cursor)
    store = PostgresOptionStore(connection_factory=lambda: connection)

    assert store.get("nlweb_active_addons") == {"addons": ["advanced_analytics"]}
    assert cursor.executed[0][1] == ("nlweb_active_addons",)
    assert connection.commits == 1
    assert connection.closed is True
    assert cursor.closed is True


def test_postgres_get_returns_default_when_missing() -> None:
    store = PostgresOptionStore(connection_factory=lambda: FakeConnection(FakeCursor()))

    assert store.get("nlweb_license_key", "none") == "none"


def test_postgres_set_wraps_value_as_json() -> None:
    cursor = FakeCursor()
    store = PostgresOptionStore(connection_factory=lambda: FakeConnection(cursor))

    store.set("nlweb_token_expires", 1767225600)

    sql, params = cursor.executed[0]
    assert sql.startswith("INSERT INTO licensing_options")
    assert params[0] == "nlweb_token_expires"
    assert isinstance(params[1], psycopg2.extras.Json)
    assert params[1].adapted == 1767225600


def test_postgres_delete_prefix_escapes_wildcards() -> None:
    cursor = FakeCursor(rowcount=3)
    store = PostgresOptionStore(connection_factory=lambda: FakeConnection(cursor))

    assert store.delete_prefix("nlweb_addon_") == 3
    assert cursor.executed[0][1] == ("nlweb\\_addon\\_%",)


def test_postgres_rolls_back_on_error() -> None:
    connection = FakeConnection(FakeCursor(fail=True))
    store = PostgresOptionStore(connection_factory=lambda: connection)

    with pytest.raises(RuntimeError):
        store.delete("nlweb_api_key")

    assert connection.rollbacks == 1
    assert connection.commits == 0
    assert connection.closed is True


def test_postgres_shared_connection_is_left_open() -> None:
    connection = FakeConnection(FakeCursor(rowcount=1))
    store = PostgresOptionStore(conn=connection)

    assert store.delete("nlweb_api_key") is True
    assert connection.commits == 0
    assert connection.closed is False


def test_postgres_store_requires_a_connection_source() -> None:
    with pytest.raises(ValueError):
        PostgresOptionStore()
