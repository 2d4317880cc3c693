import socket
import threading

import pytest

from ztrelay.greeting import app_version
from ztrelay.latency import GREETING, PACKET, LatencyReport, run_benchmark, start_udp_echo_server
from ztrelay.packet import packet_header


def recv_exact(sock, size):
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


def start_fake_proxy(reply):
    server = socket.create_server(("127.0.0.1", 0))
    seen = {}

    def serve():
        conn, _ = server.accept()
        with conn:
            seen["greeting"] = recv_exact(conn, len(GREETING))
            while True:
                packet = recv_exact(conn, len(PACKET))
                if len(packet) < len(PACKET):
                    break
                seen["packets"] = seen.get("packets", 0) + 1
                conn.sendall(reply(packet))
        server.close()

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    return server.getsockname(), seen, thread


def free_udp_port():
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_benchmark_frame_layout():
    assert app_version(GREETING) == "v1.2.12"
    assert packet_header(("127.0.0.1", 4444), 3) == PACKET[:12]
    assert PACKET[:12] == bytes([0x17, 0x03, 0x03, 0, 0x0A, 0x04, 127, 0, 0, 1, 0x11, 0x5C])


def test_run_benchmark_against_echoing_proxy():
    addr, seen, thread = start_fake_proxy(lambda packet: packet)
    report = run_benchmark(addr, 5)
    thread.join(5)

    assert seen["greeting"] == GREETING
    assert seen["packets"] == 5
    assert report.count == 5
    assert all(sample >= 0 for sample in report.samples)
    assert report.total_ns >= max(report.samples)


def test_run_benchmark_rejects_wrong_reply():
    addr, _, thread = start_fake_proxy(lambda packet: bytes(len(packet)))
    with pytest.raises(ValueError, match="Unexpected response"):
        run_benchmark(addr, 3)
    thread.join(5)


def test_run_benchmark_requires_positive_count():
    with pytest.raises(ValueError):
        run_benchmark(("127.0.0.1", 1), 0)


def test_udp_echo_server_echoes_and_stops():
    port = free_udp_port()
    stop = threading.Event()

    def serve():
        start_udp_echo_server(("127.0.0.1", port), stop)

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()

    reply = b""
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as client:
        client.settimeout(0.2)
        for _ in range(25):
            client.sendto(GREETING, ("127.0.0.1", port))
            try:
                reply, _ = client.recvfrom(64)
                break
            except TimeoutError:
                continue

    stop.set()
    thread.join(5)
    assert reply == GREETING
    assert app_version(reply) == "v1.2.12"
    assert not thread.is_alive()


def test_percentile_bounds_and_order():
    report = LatencyReport([40, 10, 30, 20], 100)
    assert report.percentile(0) == 10
    assert report.percentile(100) == 40
    assert report.percentile(50) <= report.percentile(90) <= report.percentile(99)


def test_average_divides_total_by_count():
    report = LatencyReport([1, 2, 3, 4], 100)
    assert report.average() == 25


def test_percentile_rejects_out_of_range():
    with pytest.raises(ValueError):
        LatencyReport([1], 1).percentile(101)


def test_empty_report_has_no_statistics():
    report = LatencyReport()
    with pytest.raises(ValueError):
        report.average()
    with pytest.raises(ValueError):
        report.percentile(50)