# ztrelay

ztrelay is a TCP relay for ZeroTier. A client that cannot send UDP directly
connects to the relay over TCP. The relay unwraps each frame it receives and
sends the payload by UDP to the destination named in the frame. UDP replies
are wrapped in the same frame format and sent back to the client over its TCP
connection.

## Installation

```
pip install .
```

## Running the relay

```
ztrelay --listen 0.0.0.0:4443 --max-conn 256
```

Options:

- `-l`, `--listen`: address to listen on, as `host:port` (`[host]:port` for
  IPv6). The default is `127.0.0.1:4443`. An address that cannot be parsed
  falls back to the default.
- `-c`, `--max-conn`: maximum number of clients served at the same time. The
  default is 128. A value that is not a number from 0 to 65535 falls back to
  the default.

The relay runs until it is interrupted (Ctrl+C).

For each client the relay opens its own UDP socket and uses two threads. One
thread reads frames from TCP and sends them out by UDP. The other thread reads
UDP replies and writes them back as frames. The relay closes a connection in
these cases:

- the connection limit is already reached;
- the client's first 9 bytes are not a greeting for protocol version 4;
- a frame is malformed;
- a read or a send fails.

The relay treats each TCP read as one frame. It does not reassemble frames that
arrive split across reads or joined together.

## Wire format

Greeting, sent once by the client:

| 0    | 1    | 2    | 3   | 4                | 5     | 6     | 7-8      |
|------|------|------|-----|------------------|-------|-------|----------|
| 0x17 | 0x03 | 0x03 | 0x0 | protocol version | major | minor | revision |

Data frames, sent in both directions:

| 0    | 1    | 2    | 3-4    | 5    | 6-9  | 10-11 | 12-... |
|------|------|------|--------|------|------|-------|--------|
| 0x17 | 0x03 | 0x03 | length | 0x04 | IPv4 | port  | data   |

The length field equals the payload length plus 7. Frame destinations are IPv4
only.

## Using it as a library

```python
from ztrelay.greeting import ProtocolError, app_version, validate_protocol
from ztrelay.packet import packet_header, packet_info

validate_protocol(greeting)        # raises ProtocolError unless version is 4
app_version(greeting)              # e.g. "v1.2.12"

info = packet_info(frame)          # PacketInfo(dest_addr=(ip, port), payload_length=n)
header = packet_header(("192.0.2.1", 9993), len(payload))   # 12 bytes
```

`packet_info` raises `ValueError` for a frame shorter than 12 bytes or with a
length below 7. `packet_header` raises `ValueError` for an IPv6 address or a
payload length out of range.

You can also embed the relay in your own program:

```python
from ztrelay.relay import Relay

relay = Relay(("127.0.0.1", 4443), max_conn=128)
relay.bind()
print(relay.address)
relay.serve_forever()   # call relay.shutdown() from another thread to stop
```

`ConnectionLimiter` is the thread-safe counter the relay uses to enforce
`max_conn`. `parse_address` turns `host:port` text into a `(host, port)` tuple.

## Measuring latency

`ztrelay-latency` starts a local UDP echo server. It then sends a fixed
15-byte frame through a running relay, again and again, and waits each time
for the echo. At the end it reports the total time, the p50, p90 and p99
round-trip times and the average, all in nanoseconds:

```
ztrelay-latency --count 100000 --udp 127.0.0.1:4444 --tcp 127.0.0.1:4443
```

Options:

- `-c`, `--count`: number of packets to send. The default is 100000.
- `-u`, `--udp`: address for the UDP echo server. The default is `127.0.0.1:4444`.
- `-t`, `--tcp`: address of the relay. The default is `127.0.0.1:4443`.

The frame is always addressed to `127.0.0.1:4444`. The echo server must
therefore listen there for the echoes to arrive.

From Python, `run_benchmark(("127.0.0.1", 4443), 1000)` returns a
`LatencyReport` with `percentile(pct)` and `average()`.

## Tests

```
pip install ".[test]"
pytest
```