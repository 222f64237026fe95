import http.client
import json
import re
import unittest
import threading
import time
import requests
import logging
import sys
import os

# Add the parent directory to the Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from devproxy import make_proxy
from devproxy.server import ProxyServer
from tests.backend import start_backend, stop_backend, unused_port

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def failing_middleware(request, response, next):
    raise RuntimeError("middleware failure")


class TestProxyServerIntegration(unittest.TestCase):
    """Integration tests for proxy middleware running in ProxyServer."""

    @classmethod
    def setUpClass(cls):
        """Set up test environment once before all tests."""
        logger.info("Starting test setup...")

        # Start backend server
        cls.backend_server, cls.backend_thread = start_backend()
        cls.backend_port = cls.backend_server.server_address[1]
        backend_url = f"http://localhost:{cls.backend_port}"
        logger.info("Backend server started")

        # Start proxy server
        cls.proxy = ProxyServer(
            host="localhost",
            port=0,
            middleware=[
                make_proxy("/api", backend_url, "/api"),
                make_proxy(re.compile(r"^/svc/"), backend_url),
                make_proxy("/cookies", backend_url),
                make_proxy("/login", backend_url),
                make_proxy("/down", f"http://localhost:{unused_port()}"),
            ]
        )
        cls.proxy_port = cls.proxy.port
        cls.proxy_thread = threading.Thread(target=cls.proxy.start)
        cls.proxy_thread.daemon = True
        cls.proxy_thread.start()
        logger.info("Proxy server started")

        # Wait for servers to start
        time.sleep(0.5)

    def url(self, path):
        return f"http://localhost:{self.proxy_port}{path}"

    def test_get_request_through_proxy(self):
        """Test GET request through proxy to backend server."""
        # Act
        response = requests.get(self.url("/api/posts"), timeout=10)
        data = response.json()

        # Assert
        self.assertEqual(response.status_code, 200)
        self.assertEqual(data["method"], "GET")
        self.assertEqual(data["path"], "/posts")
        self.assertEqual(data["headers"]["host"], f"localhost:{self.backend_port}")

    def test_pattern_route_through_proxy(self):
        """Test a pattern matcher forwards the full path."""
        response = requests.get(self.url("/svc/users/5?expand=1"), timeout=10)
        self.assertEqual(response.json()["path"], "/svc/users/5?expand=1")

    def test_post_request_through_proxy(self):
        """Test POST request through proxy to backend server."""
        # Arrange
        post_data = {"key": "value", "test": 123}

        # Act
        response = requests.post(self.url("/api/test"), json=post_data, timeout=10)
        data = response.json()

        # Assert
        self.assertEqual(response.status_code, 200)
        self.assertEqual(data["method"], "POST")
        self.assertEqual(json.loads(data["body"]), post_data)

    def test_large_payload(self):
        """Test handling of a body larger than one relay chunk."""
        # Arrange
        payload = "x" * 50000

        # Act
        response = requests.put(self.url("/api/upload"), data=payload, timeout=10)

        # Assert
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["body"], payload)

    def test_unmatched_request_falls_through_to_not_found(self):
        """Test request no middleware claims."""
        # Act
        response = requests.get(self.url("/static/app.js"), timeout=10)

        # Assert
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.text, "Not Found")

    def test_upstream_not_found_is_relayed(self):
        """Test the upstream status is passed through unchanged."""
        response = requests.get(self.url("/api/missing"), timeout=10)
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"], "Not found")

    def test_cookie_domain_removed(self):
        """Test Set-Cookie headers lose their Domain attribute."""
        # Act
        response = requests.get(self.url("/cookies"), timeout=10)

        # Assert
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.cookies.get("id"), "1")
        self.assertEqual(response.raw.headers.getlist("Set-Cookie"), [
            "id=1; Path=/; HttpOnly",
            "pref=domain=kept"
        ])

    def test_redirect_followed_with_cookies(self):
        """Test redirects are followed upstream and cookies set on the way are sent."""
        # Act
        response = requests.get(self.url("/login"), allow_redirects=False, timeout=10)
        data = response.json()

        # Assert
        self.assertEqual(response.status_code, 200)
        self.assertEqual(data["path"], "/echo/after-login")
        self.assertIn("session=abc", data["headers"]["cookie"])

    def test_unreachable_upstream_returns_bad_gateway(self):
        """Test transport failure is answered with 502 instead of hanging."""
        # Act
        response = requests.get(self.url("/down/anything"), timeout=10)

        # Assert
        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.text, "Bad Gateway")

    def test_repeated_request_headers_are_joined(self):
        """Test repeated request headers all reach the upstream."""
        # Arrange
        connection = http.client.HTTPConnection("localhost", self.proxy_port, timeout=10)
        connection.putrequest("GET", "/api/forwarded")
        connection.putheader("X-Forwarded-For", "1.1.1.1")
        connection.putheader("X-Forwarded-For", "2.2.2.2")
        connection.putheader("Cookie", "a=1")
        connection.putheader("Cookie", "b=2")
        connection.endheaders()

        # Act
        try:
            response = connection.getresponse()
            data = json.loads(response.read().decode('utf-8'))
        finally:
            connection.close()

        # Assert
        self.assertEqual(response.status, 200)
        self.assertEqual(data["headers"]["x-forwarded-for"], "1.1.1.1, 2.2.2.2")
        self.assertEqual(data["headers"]["cookie"], "a=1; b=2")

    def test_multiple_concurrent_requests(self):
        """Test handling multiple concurrent requests."""
        # Arrange
        def make_request():
            try:
                response = requests.get(self.url("/api/test"), timeout=30)
                return response.status_code
            except requests.RequestException as e:
                logger.error(f"Concurrent request failed: {e}")
                return None

        # Act
        num_requests = 5
        threads = []
        results = []
        for _ in range(num_requests):
            thread = threading.Thread(
                target=lambda: results.append(make_request())
            )
            threads.append(thread)
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        # Assert
        self.assertEqual(results, [200] * num_requests)

    @classmethod
    def tearDownClass(cls):
        """Clean up after all tests."""
        logger.info("Starting test cleanup...")
        cls.proxy.shutdown()
        cls.proxy_thread.join(timeout=5)
        stop_backend(cls.backend_server, cls.backend_thread)
        logger.info("Cleanup complete")


class TestProxyServer(unittest.TestCase):
    """Test cases for the ProxyServer host itself."""

    def test_server_initialization(self):
        """Test server initialization with custom configuration."""
        # Arrange
        proxy = make_proxy("/api", "http://localhost:9000")

        # Act
        server = ProxyServer(host="127.0.0.1", port=0, middleware=[proxy])

        # Assert
        try:
            self.assertEqual(server.host, "127.0.0.1")
            self.assertGreater(server.port, 0)
            self.assertEqual(server.middleware, [proxy])
        finally:
            server.shutdown()

    def test_middleware_error_returns_internal_server_error(self):
        """Test an exception in a middleware becomes a 500."""
        # Arrange
        server = ProxyServer(host="localhost", port=0, middleware=[failing_middleware])
        thread = threading.Thread(target=server.start)
        thread.daemon = True
        thread.start()
        time.sleep(0.1)

        # Act
        try:
            with self.assertLogs('devproxy.handler', level='ERROR'):
                response = requests.get(f"http://localhost:{server.port}/anything", timeout=10)
        finally:
            server.shutdown()
            thread.join(timeout=5)

        # Assert
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.text, "Internal Server Error")


if __name__ == '__main__':
    unittest.main(verbosity=2)
