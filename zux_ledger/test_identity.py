"""
Tests for collision-free address generation.
"""
import pytest

from zux_ledger.errors import ExhaustionError, ValidationError
from zux_ledger.identity import (
    CODE_LEN,
    CHARSET,
    MODULUS,
    AddressGenerator,
    from_code,
    to_code,
)


def test_code_conversion():
    assert to_code(0) == "0000000"
    assert to_code(61) == "000000Z"
    assert to_code(MODULUS - 1) == "ZZZZZZZ"
    for value in (0, 1, 62, 123456789, MODULUS - 1):
        assert from_code(to_code(value)) == value


def test_code_out_of_range():
    with pytest.raises(ValueError):
        to_code(MODULUS)
    with pytest.raises(ValueError):
        to_code(-1)
    with pytest.raises(ValueError):
        from_code("abc")
    with pytest.raises(ValueError):
        from_code("abc-def")


def test_addresses_are_distinct():
    generator = AddressGenerator()
    addresses = [generator.next_address() for _ in range(5000)]
    assert len(set(addresses)) == len(addresses)
    for address in addresses:
        assert len(address) == CODE_LEN
        assert all(ch in CHARSET for ch in address)


def test_fixed_parameters_are_deterministic():
    first = AddressGenerator(multiplier=7, offset=11)
    second = AddressGenerator(multiplier=7, offset=11)
    assert [first.next_address() for _ in range(10)] == [second.next_address() for _ in range(10)]
    assert AddressGenerator(multiplier=7, offset=11).next_address() == to_code(11)


def test_multiplier_must_be_coprime():
    with pytest.raises(ValueError):
        AddressGenerator(multiplier=2)
    with pytest.raises(ValueError):
        AddressGenerator(multiplier=31)
    with pytest.raises(ValueError):
        AddressGenerator(multiplier=MODULUS)


def test_reserved_addresses_are_skipped():
    generator = AddressGenerator(multiplier=1, offset=0)
    generator.reserve(to_code(1))
    assert generator.next_address() == to_code(0)
    assert generator.next_address() == to_code(2)


def test_exhaustion():
    generator = AddressGenerator(multiplier=1, offset=0, start=MODULUS - 2)
    assert generator.remaining == 2
    assert generator.next_address() == to_code(MODULUS - 2)
    assert generator.next_address() == to_code(MODULUS - 1)
    with pytest.raises(ExhaustionError):
        generator.next_address()
    # Still exhausted on the next call
    with pytest.raises(ValidationError):
        generator.next_address()
