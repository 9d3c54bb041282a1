import pytest

from distlab.codec import DecodeError, decode, encode
from distlab.fixture import Msg, MsgType


def test_basic_encode_decode():
    msg = Msg(type=MsgType.PUT, id=42, name="the answer", payload=[b"\x07" * 3] * 2)
    buf = encode(msg)
    assert decode(Msg, buf) == msg


def test_default():
    assert decode(Msg, b"") == Msg()


def test_type_and_id_wire_bytes():
    assert Msg(type=MsgType.PUT, id=42).encode() == b"\x08\x01\x10\x2a"


def test_empty_payload_entry_is_kept():
    msg = Msg(payload=[b""])
    assert msg.encode() == b"\x22\x00"
    assert Msg.decode(msg.encode()).payload == [b""]


def test_type_enum_known_value():
    assert Msg(type=2).type_enum() is MsgType.GET


def test_type_enum_unknown_value_falls_back():
    assert Msg(type=9).type_enum() is MsgType.UNKNOWN


def test_set_type_stores_integer():
    msg = Msg()
    msg.set_type(MsgType.DEL)
    assert msg.type == 3
    assert Msg.decode(msg.encode()).type_enum() is MsgType.DEL


def test_out_of_range_enum_survives_decode():
    msg = Msg.decode(b"\x08\x07")
    assert msg.type == 7
    assert msg.type_enum() is MsgType.UNKNOWN


def test_bad_bytes_rejected():
    with pytest.raises(DecodeError):
        Msg.decode(b"bad message")