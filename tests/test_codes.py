"""
tests/test_codes.py — Code Alphabet, Validator & Generator
============================================================
"""

from __future__ import annotations

import pytest

from kinlink.constants import CODE_ALPHABET, CODE_LENGTH
from kinlink.engine.codes import generate_code, is_valid_code, normalize_code


class TestAlphabet:
    def test_alphabet_has_32_unambiguous_characters(self):
        assert len(CODE_ALPHABET) == 32
        assert len(set(CODE_ALPHABET)) == 32
        for confusable in "01IO":
            assert confusable not in CODE_ALPHABET


class TestNormalize:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("  k7qxm2pa ", "K7QXM2PA"),
            ("K7QXM2PA", "K7QXM2PA"),
            ("\tabc\n", "ABC"),
            ("", ""),
            (None, ""),
        ],
    )
    def test_trims_and_uppercases(self, raw, expected):
        assert normalize_code(raw) == expected

    @pytest.mark.parametrize("raw", [" ab cd ", "k7qxm2pa", "ZZZZ", "0o1i"])
    def test_idempotent(self, raw):
        once = normalize_code(raw)
        assert normalize_code(once) == once


class TestIsValidCode:
    def test_accepts_alphabet_codes(self):
        assert is_valid_code("K7QXM2PA")
        assert is_valid_code("23456789")
        assert is_valid_code(CODE_ALPHABET[:8])
        assert is_valid_code(CODE_ALPHABET[-8:])

    @pytest.mark.parametrize(
        "value",
        [
            None,
            "",
            "K7QXM2P",      # too short
            "K7QXM2PAB",    # too long
            "k7qxm2pa",     # lowercase is not normalized here
            "K7QXM2P0",     # zero
            "K7QXM2P1",     # one
            "K7QXM2PI",     # I
            "K7QXM2PO",     # O
            "K7QX M2P",     # whitespace
            12345678,
        ],
    )
    def test_rejects(self, value):
        assert is_valid_code(value) is False

    def test_normalized_alphabet_strings_validate(self):
        for start in range(0, len(CODE_ALPHABET) - CODE_LENGTH + 1):
            raw = CODE_ALPHABET[start:start + CODE_LENGTH].lower()
            assert is_valid_code(normalize_code(f" {raw} "))


class TestGenerateCode:
    def test_generated_codes_always_validate(self):
        for _ in range(500):
            code = generate_code()
            assert len(code) == CODE_LENGTH
            assert is_valid_code(code)

    def test_generated_codes_vary(self):
        assert len({generate_code() for _ in range(50)}) > 1
