import pytest

from keyrotator import KeyPool, NoKeysConfiguredError, UnknownKeyError


def test_construct_assigns_sequential_ids():
    pool = KeyPool(["t1", "t2", "t3"])
    assert [k.id for k in pool] == ["001", "002", "003"]
    assert len(pool) == 3  # noqa: PLR2004


def test_duplicates_and_blanks_dropped_in_order():
    pool = KeyPool(["b", "a", "", "b", "c", "a"])
    assert [k.credential for k in pool] == ["b", "a", "c"]


def test_no_keys_is_fatal():
    with pytest.raises(NoKeysConfiguredError):
        KeyPool([])
    with pytest.raises(NoKeysConfiguredError):
        KeyPool(["", ""])


def test_unknown_key_id():
    pool = KeyPool(["t1"])
    with pytest.raises(UnknownKeyError):
        pool.get("999")
    with pytest.raises(KeyError):
        pool.enable("999")


def test_credential_not_in_repr():
    pool = KeyPool(["sk-super-secret-credential"])
    assert "sk-super-secret-credential" not in repr(pool.get("001"))
