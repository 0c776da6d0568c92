from __future__ import annotations

from pathlib import Path
import http.client
import ipaddress
import socket
import tempfile
import urllib.error
import urllib.parse
import urllib.request

from .exceptions import DownloadError


MAX_DOWNLOAD_BYTES = 64 * 1024 * 1024
LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})


class HttpClient:
    def __init__(
        self,
        timeout_seconds: float = 30,
        max_download_bytes: int = MAX_DOWNLOAD_BYTES,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.max_download_bytes = max_download_bytes
        self.user_agent = "packdeploy/0.1"

    def _request(self, url: str) -> urllib.request.Request:
        return urllib.request.Request(url, headers={"User-Agent": self.user_agent})

    def download(self, url: str, destination: Path) -> Path:
        """Fetch ``url`` into ``destination``, replacing it only once the body is complete."""
        self._validate_remote_url(url)
        destination.parent.mkdir(parents=True, exist_ok=True)
        tmp_path: Path | None = None
        try:
            with urllib.request.urlopen(
                self._request(url), timeout=self.timeout_seconds
            ) as response, tempfile.NamedTemporaryFile(
                "wb", delete=False, dir=str(destination.parent), suffix=".part"
            ) as tmp:
                tmp_path = Path(tmp.name)
                declared = response.headers.get("Content-Length")
                if declared and declared.isdigit() and int(declared) > self.max_download_bytes:
                    raise DownloadError(
                        f"Download for {destination.name} exceeds the size limit."
                    )
                received = 0
                while True:
                    chunk = response.read(1024 * 1024)
                    if not chunk:
                        break
                    received += len(chunk)
                    if received > self.max_download_bytes:
                        raise DownloadError(
                            f"Download for {destination.name} exceeded the allowed size limit."
                        )
                    tmp.write(chunk)
            if received == 0:
                raise DownloadError(f"Download for {destination.name} returned an empty body.")
            tmp_path.replace(destination)
        except (urllib.error.URLError, OSError) as exc:
            raise DownloadError(f"Download failed for {url}: {exc}") from exc
        finally:
            if tmp_path and tmp_path.exists():
                try:
                    tmp_path.unlink()
                except OSError:
                    pass
        return destination

    def get_status(self, url: str, timeout: float | None = None) -> int | None:
        """Return the HTTP status for a GET against a loopback URL, or None if unreachable."""
        self._validate_local_url(url)
        try:
            with urllib.request.urlopen(
                self._request(url),
                timeout=self.timeout_seconds if timeout is None else timeout,
            ) as response:
                return int(response.status)
        except urllib.error.HTTPError as exc:
            return int(exc.code)
        except (urllib.error.URLError, http.client.HTTPException, socket.timeout, ConnectionError):
            return None

    @staticmethod
    def _validate_remote_url(url: str) -> None:
        parsed = urllib.parse.urlparse(url)
        if parsed.scheme.lower() != "https":
            raise DownloadError(f"Blocked URL with unsupported scheme: {url}")
        host = parsed.hostname
        if not host:
            raise DownloadError(f"Blocked URL with missing host: {url}")
        try:
            ip = ipaddress.ip_address(host)
        except ValueError:
            return
        if (
            ip.is_private
            or ip.is_loopback
            or ip.is_link_local
            or ip.is_multicast
            or ip.is_reserved
        ):
            raise DownloadError(f"Blocked URL targeting disallowed address: {url}")

    @staticmethod
    def _validate_local_url(url: str) -> None:
        parsed = urllib.parse.urlparse(url)
        if parsed.scheme.lower() not in ("http", "https"):
            raise ValueError(f"Unsupported scheme for local probe: {url}")
        if (parsed.hostname or "").lower() not in LOOPBACK_HOSTS:
            raise ValueError(f"Local probe must target a loopback host: {url}")
