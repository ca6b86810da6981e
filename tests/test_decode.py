from healthstream.core.decode import IncrementalTextDecoder, detect_bom


def _decode_in_pieces(data: bytes, size: int, encoding: str | None = None) -> tuple[str, IncrementalTextDecoder]:
    dec = IncrementalTextDecoder(encoding)
    parts = [dec.decode(data[i : i + size]) for i in range(0, len(data), size)]
    parts.append(dec.finish())
    return "".join(parts), dec


def test_utf8_default_without_bom() -> None:
    text, dec = _decode_in_pieces("Hello <Record/>".encode("utf-8"), 4)
    assert text == "Hello <Record/>"
    assert dec.encoding == "utf-8"
    assert dec.had_replacement is False


def test_multibyte_character_split_across_blocks() -> None:
    original = 'sourceName="Jürgen’s Watch ♥"'
    data = original.encode("utf-8")
    for size in (1, 2, 3, 5):
        text, dec = _decode_in_pieces(data, size)
        assert text == original
        assert dec.had_replacement is False


def test_utf8_bom_is_stripped() -> None:
    text, dec = _decode_in_pieces(b"\xef\xbb\xbf<Record/>", 2)
    assert text == "<Record/>"
    assert dec.encoding == "utf-8"


def test_utf16_bom_selects_codec() -> None:
    data = "\ufeff<Record a=\"1\"/>".encode("utf-16-le")
    text, dec = _decode_in_pieces(data, 3)
    assert text == '<Record a="1"/>'
    assert dec.encoding == "utf-16-le"


def test_short_input_shorter_than_bom() -> None:
    text, dec = _decode_in_pieces(b"\xef", 1)
    assert dec.encoding == "utf-8"
    assert text == "\ufffd"
    assert dec.had_replacement is True


def test_invalid_bytes_are_replaced() -> None:
    text, dec = _decode_in_pieces(b"ab\xffcd", 10)
    assert text == "ab\ufffdcd"
    assert dec.had_replacement is True


def test_explicit_encoding() -> None:
    text, dec = _decode_in_pieces("café".encode("latin-1"), 2, encoding="latin-1")
    assert text == "café"
    assert dec.encoding == "iso8859-1"


def test_detect_bom() -> None:
    assert detect_bom(b"\xff\xfe\x00\x00rest") == ("utf-32-le", 4)
    assert detect_bom(b"\xff\xfeX") == ("utf-16-le", 2)
    assert detect_bom(b"<?xml") is None
