"""Greeting packet sent by a client when it opens a relay connection.

Layout of the nine greeting bytes::

    | 0x17 | 0x03 | 0x03 | 0x00 | protocol | major | minor | revision (2) |

The first three bytes imitate a TLS frame header.
"""

GREETING_SIZE = 9
PROTOCOL_VERSION = 4


class ProtocolError(ValueError):
    """Raised when a greeting packet is missing, short or of the wrong protocol."""


def validate_protocol(data):
    """Check that the greeting carries protocol version 4 and return it."""
    if len(data) <= 4:
        raise ProtocolError("Greeting packet too short")
    if data[4] != PROTOCOL_VERSION:
        raise ProtocolError("Invalid protocol version")
    return data[4]


def app_version(data):
    """Return the client application version as ``vMAJOR.MINOR.REVISION``."""
    if len(data) < GREETING_SIZE:
        raise ProtocolError("Greeting packet too short")
    revision = (data[7] << 8) | data[8]
    return f"v{data[5]}.{data[6]}.{revision}"