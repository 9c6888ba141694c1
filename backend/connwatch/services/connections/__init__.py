"""Connection tester factory."""

from connwatch.services.connections.base import ConnectionTester


def get_connection_tester(connection_type: str) -> ConnectionTester:
    """Return the tester for a connection type. API connections are probed over HTTP."""
    if connection_type == "api":
        from connwatch.services.connections.testers import HttpConnectionTester
        return HttpConnectionTester()
    else:
        from connwatch.services.connections.testers import TcpConnectionTester
        return TcpConnectionTester()
