import pytest

from owamail.dav.escape import escape


def test_space_and_hash_are_encoded():
    assert escape("a b/c#1") == "a%20b/c%231"


def test_allowed_punctuation_is_left_alone():
    url = "http://mail.example.com:8080/exchange/jdoe/Inbox/Re:_hi!(1)~*';&=+$,@-x.EML%20"
    assert escape(url) == url


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("é", "%E9"),
        ("€", "%20%AC"),
        ("Ł", "%01%41"),
        ("?", "%3F"),
        ('"<>', "%22%3C%3E"),
        ("\x00", "%00"),
    ],
)
def test_code_units_are_encoded_low_byte_last(raw, expected):
    assert escape(raw) == expected


def test_astral_characters_encode_each_surrogate():
    # U+1F600 is D83D DE00 in UTF-16
    assert escape("\U0001F600") == "%D8%3D%DE%00"


def test_mixed_subject_url():
    assert escape("/Inbox/Café menu.EML") == "/Inbox/Caf%E9%20menu.EML"
