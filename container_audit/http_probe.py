"""Plain HTTP probing of service endpoints."""
import http.client
import logging
import socket
import time
import urllib.error
import urllib.request

from .errors import InspectionFailed, TransportFailure
from .models import HttpFacts

logger = logging.getLogger(__name__)

MAX_BODY_BYTES = 1024 * 1024


class HttpProbe:
    """GET an endpoint and report status, content type, body and latency.

    A non-2xx answer is still a valid result. Only a request that produced no
    response at all (refused, DNS, timeout) raises TransportFailure.
    """

    def __init__(self, timeout: float = 5.0, user_agent: str = "container-audit/1.0"):
        self.timeout = timeout
        self.user_agent = user_agent

    def get(self, url: str) -> HttpFacts:
        req = urllib.request.Request(url, method="GET")
        req.add_header("User-Agent", self.user_agent)
        req.add_header("Accept", "application/json")
        start = time.perf_counter()
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                body = resp.read(MAX_BODY_BYTES).decode(errors="replace")
                status = resp.status
                content_type = resp.headers.get("Content-Type", "")
        except urllib.error.HTTPError as e:
            body = e.read(MAX_BODY_BYTES).decode(errors="replace") if e.fp else ""
            status = e.code
            content_type = e.headers.get("Content-Type", "") if e.headers else ""
        except (urllib.error.URLError, socket.timeout, TimeoutError, ConnectionError) as e:
            reason = getattr(e, "reason", e)
            raise TransportFailure(f"GET {url}: {reason}")
        except http.client.HTTPException as e:
            raise InspectionFailed(f"GET {url}: malformed response ({e.__class__.__name__})")
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug("GET %s -> %s in %.1f ms", url, status, elapsed_ms)
        return HttpFacts(
            url=url,
            status=status,
            content_type=content_type or "",
            body=body,
            elapsed_ms=elapsed_ms,
        )
