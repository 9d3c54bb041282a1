import pytest

from distlab.bitset import Bitset


def test_fresh_bitset_has_no_bits_set():
    bits = Bitset(100)
    assert bits.popcount() == 0
    assert all(word == 0 for word in bits.words)


@pytest.mark.parametrize("size", [1, 63, 64, 65, 128, 129])
def test_last_position_is_usable_and_next_is_not(size):
    bits = Bitset(size)
    bits.set(size - 1)
    assert size - 1 in bits
    with pytest.raises(IndexError):
        bits.set(len(bits.words) * 64)


def test_empty_bitset_rejects_any_position():
    bits = Bitset(0)
    assert bits.words == ()
    with pytest.raises(IndexError):
        bits.set(0)


def test_negative_position_is_rejected():
    bits = Bitset(10)
    with pytest.raises(IndexError):
        bits.clear(-1)


def test_negative_size_is_rejected():
    with pytest.raises(ValueError):
        Bitset(-1)


def test_popcount_counts_set_positions_across_words():
    positions = [0, 5, 63, 64, 127]
    bits = Bitset(128)
    for pos in positions:
        bits.set(pos)
    assert bits.popcount() == len(positions)
    assert all(pos in bits for pos in positions)
    assert 1 not in bits


def test_setting_twice_counts_once():
    bits = Bitset(70)
    bits.set(66)
    once = bits.popcount()
    bits.set(66)
    assert bits.popcount() == once


def test_clear_undoes_set():
    bits = Bitset(130)
    before = bits.copy()
    bits.set(129)
    assert bits != before
    bits.clear(129)
    assert bits == before
    assert hash(bits) == hash(before)


def test_copy_is_independent():
    original = Bitset(64)
    original.set(7)
    duplicate = original.copy()
    assert duplicate == original
    duplicate.set(8)
    assert 8 not in original
    assert duplicate != original


def test_equal_bitsets_hash_equally():
    first, second = Bitset(200), Bitset(200)
    for pos in (1, 100, 199):
        first.set(pos)
        second.set(pos)
    assert first == second
    assert hash(first) == hash(second)


def test_different_sizes_are_not_equal():
    assert Bitset(64) != Bitset(65)


def test_empty_bitset_hash_is_zero():
    bits = Bitset(64)
    assert bits.popcount() == 0
    assert hash(bits) == 0
    bits.set(3)
    bits.clear(3)
    assert hash(bits) == 0


def test_hash_mixes_popcount_with_words():
    bits = Bitset(64)
    bits.set(1)
    assert hash(bits) == bits.words[0] ^ bits.popcount()