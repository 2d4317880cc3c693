"""TCP relay that forwards framed packets to UDP destinations and back."""

import argparse
import ipaddress
import logging
import socket
import threading

from ztrelay.greeting import GREETING_SIZE, ProtocolError, app_version, validate_protocol
from ztrelay.packet import HEADER_SIZE, packet_header, packet_info

log = logging.getLogger(__name__)

UDP_BIND_ADDR = ("0.0.0.0", 0)
DEFAULT_TCP_BIND_ADDR = ("127.0.0.1", 4443)
DEFAULT_MAX_CONN = 128
READ_BUFFER_SIZE = 131_072
_SOCKET_TIMEOUT = 1.0
_ACCEPT_TIMEOUT = 0.5


def _format_addr(addr):
    host, port = addr[0], addr[1]
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


class ConnectionLimiter:
    """Thread-safe counter of open connections with an upper bound."""

    def __init__(self, max_conn):
        self.max_conn = max_conn
        self._count = 0
        self._lock = threading.Lock()

    def acquire(self):
        """Take a connection slot; return False when the limit is reached."""
        with self._lock:
            if self._count >= self.max_conn:
                return False
            self._count += 1
            return True

    def release(self):
        """Give a connection slot back."""
        with self._lock:
            if self._count == 0:
                raise RuntimeError("release() called more times than acquire()")
            self._count -= 1

    @property
    def count(self):
        """Number of connections currently holding a slot."""
        with self._lock:
            return self._count


def _recv_exact(conn, size):
    data = bytearray()
    while len(data) < size:
        try:
            chunk = conn.recv(size - len(data))
        except OSError as exc:
            raise ProtocolError(f"Can't read greeting message: {exc}") from exc
        if not chunk:
            raise ProtocolError("Can't read greeting message: connection closed")
        data.extend(chunk)
    return bytes(data)


def read_greeting_packet(conn):
    """Read and check the client's greeting; return the client app version."""
    data = _recv_exact(conn, GREETING_SIZE)
    validate_protocol(data)
    return app_version(data)


def _tcp_to_udp(conn, udp, stop, peer):
    conn.settimeout(_SOCKET_TIMEOUT)
    while not stop.is_set():
        try:
            data = conn.recv(READ_BUFFER_SIZE)
        except TimeoutError:
            continue
        except OSError as exc:
            log.error("Unable to read stream: %s", exc)
            return
        if not data:
            log.debug("[TCP %s => me] connection is closed", peer)
            return
        try:
            dest_addr, payload_length = packet_info(data)
        except ValueError as exc:
            log.error("[TCP %s => me] malformed packet: %s", peer, exc)
            return
        dest = _format_addr(dest_addr)
        log.debug("[TCP %s => me] received packet to %s/UDP length=%d", peer, dest, len(data))
        try:
            udp.sendto(data[HEADER_SIZE:HEADER_SIZE + payload_length], dest_addr)
        except OSError as exc:
            log.error("[me => UDP %s] Failed to send packet: %s", dest, exc)
            return
        log.debug("[me => UDP %s] sent packet", dest)


def _udp_to_tcp(udp, conn, stop, peer):
    udp.settimeout(_SOCKET_TIMEOUT)
    while not stop.is_set():
        try:
            payload, src_addr = udp.recvfrom(READ_BUFFER_SIZE)
        except TimeoutError:
            continue
        except OSError as exc:
            log.error("Unable to read UDP data: %s", exc)
            stop.set()
            return
        src = _format_addr(src_addr)
        log.debug("[UDP %s => me] received data len=%d", src, len(payload))
        try:
            conn.sendall(packet_header(src_addr, len(payload)) + payload)
        except (OSError, ValueError) as exc:
            log.error("[me => TCP %s] Failed to write packet: %s", peer, exc)
            stop.set()
            return
        log.debug("[me => TCP %s] sent data from %s/UDP", peer, src)


class Relay:
    """Accepts TCP clients and relays their packets over UDP."""

    def __init__(self, listen_addr, max_conn):
        self.listen_addr = listen_addr
        self.limiter = ConnectionLimiter(max_conn)
        self._sock = None
        self._stopped = threading.Event()

    def bind(self):
        """Open the listening socket."""
        family = socket.AF_INET6 if ipaddress.ip_address(self.listen_addr[0]).version == 6 else socket.AF_INET
        self._sock = socket.create_server(self.listen_addr, family=family)
        return self

    @property
    def address(self):
        """Address the relay is listening on."""
        if self._sock is None:
            raise RuntimeError("Relay is not bound")
        return self._sock.getsockname()

    def serve_forever(self):
        """Accept connections until shutdown() is called."""
        if self._sock is None:
            self.bind()
        sock = self._sock
        sock.settimeout(_ACCEPT_TIMEOUT)
        try:
            while not self._stopped.is_set():
                try:
                    conn, _ = sock.accept()
                except TimeoutError:
                    continue
                except OSError as exc:
                    if self._stopped.is_set():
                        break
                    log.error("Can't establish a connection: %s", exc)
                    continue
                threading.Thread(target=self.handle_connection, args=(conn,), daemon=True).start()
        finally:
            sock.close()

    def shutdown(self):
        """Stop accepting connections."""
        self._stopped.set()
        if self._sock is not None:
            self._sock.close()

    def handle_connection(self, conn):
        """Serve one client until it disconnects or an error occurs."""
        with conn:
            conn.settimeout(None)
            peer = _format_addr(conn.getpeername())
            log.info("[TCP %s => me] new connection", peer)
            conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

            if not self.limiter.acquire():
                log.error(
                    "[me] Reached maximum number of connections: %d/%d",
                    self.limiter.count,
                    self.limiter.max_conn,
                )
                return
            try:
                try:
                    version = read_greeting_packet(conn)
                except ProtocolError as exc:
                    log.warning("[TCP %s => me] Invalid greeting packet: %s", peer, exc)
                    return
                log.info("[TCP %s => me] greeting received; client app version=%s", peer, version)
                self._relay(conn, peer)
            finally:
                self.limiter.release()
                log.info("[me] closing the connection with %s", peer)

    def _relay(self, conn, peer):
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as udp:
            udp.bind(UDP_BIND_ADDR)
            log.info("[me] opened UDP socket: %s", _format_addr(udp.getsockname()))
            stop = threading.Event()
            sender = threading.Thread(target=_udp_to_tcp, args=(udp, conn, stop, peer), daemon=True)
            sender.start()
            try:
                _tcp_to_udp(conn, udp, stop, peer)
            finally:
                stop.set()
                sender.join()


def parse_address(text):
    """Parse ``host:port`` (``[host]:port`` for IPv6) into a (host, port) tuple."""
    host, sep, port_text = text.rpartition(":")
    if not sep or not host:
        raise ValueError(f"Invalid socket address: {text!r}")
    bracketed = host.startswith("[") and host.endswith("]")
    if bracketed:
        host = host[1:-1]
    ip = ipaddress.ip_address(host)
    if bracketed != (ip.version == 6):
        raise ValueError(f"Invalid socket address: {text!r}")
    if not port_text.isdecimal() or int(port_text) > 0xFFFF:
        raise ValueError(f"Invalid port: {port_text!r}")
    return str(ip), int(port_text)


def _parse_max_conn(text):
    if text is not None and text.isdecimal() and int(text) <= 0xFFFF:
        return int(text)
    return DEFAULT_MAX_CONN


def main(argv=None):
    """Run the relay from the command line."""
    parser = argparse.ArgumentParser(prog="ztrelay", description="ZeroTier TCP proxy")
    parser.add_argument("-c", "--max-conn", help="Maximum number of connections")
    parser.add_argument("-l", "--listen", help="Address to listen, default: 127.0.0.1:4443")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="[%(asctime)s %(levelname)s %(name)s] %(message)s",
    )

    try:
        listen_addr = parse_address(args.listen) if args.listen else DEFAULT_TCP_BIND_ADDR
    except ValueError:
        listen_addr = DEFAULT_TCP_BIND_ADDR
    max_conn = _parse_max_conn(args.max_conn)

    relay = Relay(listen_addr, max_conn).bind()
    print(
        f"[ZT TCP relay] waiting for connections: {_format_addr(listen_addr)} max_conn={max_conn}",
        flush=True,
    )
    try:
        relay.serve_forever()
    except KeyboardInterrupt:
        relay.shutdown()
    return 0