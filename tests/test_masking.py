from keyrotator import mask_key


def test_short_credentials_fully_opaque():
    assert mask_key("") == "***"
    assert mask_key(None) == "***"
    assert mask_key("abc") == "***"
    assert mask_key("12345678") == "***"


def test_long_credential_shows_first_and_last_four():
    cred = "sk-abcdefghijklm9876"
    assert len(cred) == 20  # noqa: PLR2004
    masked = mask_key(cred)
    assert masked == "sk-a...9876"
    assert "bcdefghijklm" not in masked


def test_nine_characters_is_the_first_visible_length():
    assert mask_key("123456789") == "1234...6789"
