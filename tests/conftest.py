"""Shared fixtures."""

import json
import socket
import threading
import time

import pytest

DRIP_INTERVAL_S = 0.15


def _drip_response() -> bytes:
    body = json.dumps({"valid": True, "padding": "x" * 64}).encode()
    head = (
        "HTTP/1.1 200 OK\r\n"
        "Content-Type: application/json\r\n"
        f"Content-Length: {len(body)}\r\n"
        "\r\n"
    ).encode()
    return head + body


@pytest.fixture
def drip_server():
    """
    Local HTTP server that answers every request one byte at a time.

    Each byte arrives well inside any per-read timeout, but the whole
    response takes tens of seconds. Yields the API base URL.
    """
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    listener.bind(("127.0.0.1", 0))
    listener.listen(8)
    listener.settimeout(0.1)
    stop = threading.Event()
    response = _drip_response()

    def drip(conn: socket.socket) -> None:
        with conn:
            conn.settimeout(1.0)
            try:
                conn.recv(65536)
                for i in range(len(response)):
                    if stop.is_set():
                        return
                    conn.sendall(response[i:i + 1])
                    time.sleep(DRIP_INTERVAL_S)
            except OSError:
                return

    def serve() -> None:
        while not stop.is_set():
            try:
                conn, _ = listener.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            threading.Thread(target=drip, args=(conn,), daemon=True).start()

    server = threading.Thread(target=serve, daemon=True)
    server.start()
    port = listener.getsockname()[1]
    try:
        yield f"http://127.0.0.1:{port}"
    finally:
        stop.set()
        server.join(timeout=2)
        listener.close()
