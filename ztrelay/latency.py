"""Round-trip latency benchmark for the relay."""

import argparse
import math
import socket
import threading
import time
from dataclasses import dataclass, field

DEFAULT_UDP_ECHO_ADDR = "127.0.0.1:4444"
DEFAULT_TCP_PROXY_ADDR = "127.0.0.1:4443"
DEFAULT_COUNT = 100_000

GREETING = bytes([0x17, 0x03, 0x03, 0, 4, 1, 2, 0, 12])
# Frame addressed to 127.0.0.1:4444 carrying three zero bytes.
PACKET = bytes([0x17, 0x03, 0x03, 0, 0x0A, 0x04, 127, 0, 0, 1, 0x11, 0x5C, 0, 0, 0])
_ECHO_BUFFER_SIZE = 32


@dataclass
class LatencyReport:
    """Per-round-trip latencies and the total run time, in nanoseconds."""

    samples: list = field(default_factory=list)
    total_ns: int = 0

    @property
    def count(self):
        return len(self.samples)

    def percentile(self, pct):
        """Nearest-rank percentile of the recorded latencies."""
        if not 0 <= pct <= 100:
            raise ValueError(f"Percentile out of range: {pct}")
        if not self.samples:
            raise ValueError("No samples recorded")
        ordered = sorted(self.samples)
        rank = max(math.ceil(pct / 100 * len(ordered)), 1)
        return ordered[rank - 1]

    def average(self):
        """Total run time divided by the number of round trips."""
        if not self.samples:
            raise ValueError("No samples recorded")
        return self.total_ns // len(self.samples)


def start_udp_echo_server(addr, stop_event):
    """Echo UDP datagrams (up to 32 bytes) back to their sender until stopped."""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.bind(addr)
        sock.settimeout(0.5)
        while not stop_event.is_set():
            try:
                data, sender = sock.recvfrom(_ECHO_BUFFER_SIZE)
            except (TimeoutError, ConnectionResetError):
                continue
            sock.sendto(data, sender)


def _recv_exact(sock, size):
    data = bytearray()
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            raise ConnectionError("Proxy closed the connection")
        data.extend(chunk)
    return bytes(data)


def run_benchmark(tcp_addr, count):
    """Send ``count`` packets through the proxy and time each echo."""
    if count < 1:
        raise ValueError("count must be at least 1")
    samples = []
    with socket.create_connection(tcp_addr) as stream:
        stream.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        stream.sendall(GREETING)
        started = time.perf_counter_ns()
        for _ in range(count):
            start = time.perf_counter_ns()
            stream.sendall(PACKET)
            reply = _recv_exact(stream, len(PACKET))
            if reply != PACKET:
                raise ValueError(f"Unexpected response: {reply.hex()}")
            samples.append(time.perf_counter_ns() - start)
        total = time.perf_counter_ns() - started
    return LatencyReport(samples, total)


def _host_port(text):
    host, sep, port = text.rpartition(":")
    if not sep or not port.isdecimal():
        raise ValueError(f"Invalid address: {text!r}")
    return host.strip("[]"), int(port)


def main(argv=None):
    """Run the latency benchmark from the command line."""
    parser = argparse.ArgumentParser(prog="ztrelay-latency", description="ZeroTier TCP proxy benchmark")
    parser.add_argument("-c", "--count", help="Number of packets to send, default: 100000")
    parser.add_argument("-u", "--udp", help="IP address to bind UDP echo server, default: 127.0.0.1:4444")
    parser.add_argument("-t", "--tcp", help="IP address of the proxy to connect, default: 127.0.0.1:4443")
    args = parser.parse_args(argv)

    count = int(args.count) if args.count and args.count.isdecimal() else DEFAULT_COUNT
    tcp_addr = args.tcp or DEFAULT_TCP_PROXY_ADDR
    udp_addr = args.udp or DEFAULT_UDP_ECHO_ADDR

    print(f"Starting benchmark. UDP echo: {udp_addr}. Connecting to: {tcp_addr}")

    stop = threading.Event()
    echo = threading.Thread(target=start_udp_echo_server, args=(_host_port(udp_addr), stop), daemon=True)
    echo.start()
    try:
        report = run_benchmark(_host_port(tcp_addr), count)
    finally:
        stop.set()

    print(f"{count} took {report.total_ns} ns")
    print(
        f"Percentiles: p50: {report.percentile(50)} ns p90: {report.percentile(90)} ns "
        f"p99: {report.percentile(99)} ns; Avg: {report.average()} ns"
    )
    return 0