import time

import requests

from llamactl.shared.logger import Logger

logger = Logger.get(__name__)


class HealthChecker:
    """
    Utility class for probing a llama-server HTTP endpoint.
    """

    @staticmethod
    def check_http_endpoint(host: str, port: int, endpoint: str = "/health", timeout: float = 5.0) -> bool:
        """
        Check if an HTTP endpoint is responding with a successful status code.

        Args:
            host: The host address
            port: The port number
            endpoint: The health endpoint path (default: "/health")
            timeout: Request timeout in seconds

        Returns:
            True if the endpoint responds with 200 status, False otherwise
        """
        url = f"http://{host}:{port}{endpoint}"
        try:
            response = requests.get(url, timeout=timeout)
        except requests.RequestException as e:
            logger.debug(f"Health check failed for {url}: {e}")
            return False

        if response.status_code == 200:
            logger.debug(f"Health check passed for {url}")
            return True
        logger.debug(f"Health check failed for {url}: status {response.status_code}")
        return False

    @staticmethod
    def wait_until_healthy(host: str, port: int, timeout: float = 120.0, interval: float = 1.0,
                           endpoint: str = "/health") -> bool:
        """
        Poll the health endpoint until it answers 200 or the timeout elapses.

        llama-server answers 503 while the model is still loading, so a server
        that is up but not ready keeps the loop going.

        Returns:
            True once healthy, False on timeout
        """
        deadline = time.monotonic() + timeout
        while True:
            if HealthChecker.check_http_endpoint(host, port, endpoint, timeout=5.0):
                return True
            if time.monotonic() >= deadline:
                logger.warning(f"Server on {host}:{port} did not become healthy within {timeout:.0f}s")
                return False
            time.sleep(interval)
