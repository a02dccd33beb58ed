import threading
from typing import Callable, List, Optional

import pytest
from werkzeug.serving import make_server

from SUT.tsdb_emulator.app import create_app
from TsdbBenchFramework.adapters.base import BackendQuery, BackendResponse
from TsdbBenchFramework.adapters.tsdb.client import BACKENDS, TsdbClient

T = 1_700_000_000_123_456_789  # 2023-11-14T22:13:20.123456789Z


class FakeTransport:
    def __init__(self, responder: Optional[Callable[[BackendQuery], BackendResponse]] = None):
        self.responder = responder or (lambda q: BackendResponse(200, ""))
        self.sent: List[BackendQuery] = []
        self.closed = False

    def send(self, query):
        self.sent.append(query)
        return self.responder(query)

    def close(self):
        self.closed = True


def client_with(backend, transports, **props):
    """A TsdbClient whose codec talks to the given fake transports."""
    codec_cls = BACKENDS[backend]

    class _Codec(codec_cls):
        def open_transports(self):
            return transports

    client = TsdbClient(backend, codec_factory=_Codec)
    client.init({"ip": "localhost", "port": 1, "tcpPort": 1, "httpPort": 1, **props})
    return client


@pytest.fixture
def emulator():
    app = create_app()
    server = make_server("127.0.0.1", 0, app, threaded=True)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield {"ip": "127.0.0.1", "port": server.server_port, "app": app}
    finally:
        server.shutdown()
        thread.join(timeout=5.0)
