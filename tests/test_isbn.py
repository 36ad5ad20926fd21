from livraria.isbn import is_valid_length, isbn13_to_isbn10, normalize_isbn


def test_normalize_strips_separators() -> None:
    assert normalize_isbn("978-85-359-0277-3") == "9788535902773"
    assert normalize_isbn(" 0-306-40615-x ") == "030640615X"
    assert normalize_isbn(None) == ""


def test_valid_length_is_10_or_13() -> None:
    assert is_valid_length("8535902775")
    assert is_valid_length("9788535902773")
    assert not is_valid_length("978853590277")
    assert not is_valid_length("")


def test_isbn13_to_isbn10() -> None:
    assert isbn13_to_isbn10("9788535902773") == "8535902775"
    assert isbn13_to_isbn10("978-0-306-40615-7") == "0306406152"


def test_isbn10_check_character_x() -> None:
    assert isbn13_to_isbn10("9780804429573") == "080442957X"


def test_only_978_prefix_converts() -> None:
    assert isbn13_to_isbn10("9791032305690") is None
    assert isbn13_to_isbn10("8535902775") is None
