import pytest

from ztrelay.greeting import ProtocolError, app_version, validate_protocol


def test_app_version():
    data = bytes([0, 0, 0, 0, 4, 1, 2, 0xA, 1])
    data_2 = bytes([0, 0, 0, 0, 4, 0, 0, 0, 1])

    assert app_version(data) == "v1.2.2561"
    assert app_version(data_2) == "v0.0.1"


def test_validate_protocol_accepts_version_four():
    data = bytes([0, 0, 0, 0, 4, 1, 2, 1, 2])
    assert validate_protocol(data) == 4


def test_validate_protocol_rejects_other_versions():
    invalid_data = bytes([0, 0, 0, 0, 0])
    with pytest.raises(ProtocolError, match="Invalid protocol version"):
        validate_protocol(invalid_data)


def test_validate_protocol_rejects_short_packet():
    with pytest.raises(ProtocolError):
        validate_protocol(bytes([0x17, 3, 3]))


def test_app_version_rejects_short_packet():
    with pytest.raises(ProtocolError):
        app_version(bytes([0, 0, 0, 0, 4, 1]))


def test_protocol_error_is_value_error():
    with pytest.raises(ValueError):
        validate_protocol(bytes([0, 0, 0, 0, 6, 0, 0, 0, 0]))