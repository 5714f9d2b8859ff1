from chatorders.text import (
    compact,
    normalize,
    normalize_dni,
    normalize_phone,
    parse_quantity,
    stem,
    tokenize,
)


def test_normalize_strips_accents_and_punctuation():
    assert normalize("  Cocá-Cola 1.5L!! ") == "coca cola 1 5l"
    assert normalize("AÑADIR   Galletitas 🍪") == "anadir galletitas"


def test_normalize_is_total():
    assert normalize(None) == ""
    assert normalize("") == ""
    assert normalize("¡¿!?") == ""


def test_stem_plural_forms():
    assert stem("galletitas") == "galletita"
    assert stem("panes") == "pan"
    assert stem("coca") == "coca"


def test_tokenize_drops_short_tokens_and_stopwords():
    assert tokenize("2 cocas de 1.5L para la casa") == ["coca", "casa"]


def test_compact_removes_spaces():
    assert compact("Coca Cola") == "cocacola"


def test_parse_quantity_digits_and_words():
    assert parse_quantity("quitame 2 cocas") == 2
    assert parse_quantity("sacame una sprite") == 1
    assert parse_quantity("tres yerbas") == 3
    assert parse_quantity("sin coca") is None


def test_parse_quantity_ignores_presentation_sizes():
    assert parse_quantity("quitame la coca 1.5L") is None
    assert parse_quantity("quitame 2 coca 2,25 lts") == 2


def test_normalize_dni():
    assert normalize_dni("30.111.222") == "30111222"
    assert normalize_dni("123") is None
    assert normalize_dni(None) is None


def test_normalize_phone():
    assert normalize_phone("+54 9 11 1234-5678") == "+5491112345678"
