"""Shared fixtures: an in-memory transport, a local HTTP server and tarball builders."""

import asyncio
import io
import json
import sys
import tarfile
import threading

import pytest
from aiohttp import web

from pmpin.errors import HttpError, NetworkDisabled
from pmpin.settings import BrokerSettings


class FakeHttp:
    """Stands in for HttpClient, serving canned bodies keyed by URL."""

    def __init__(self, routes=None, enable_network=True):
        self.routes = dict(routes or {})
        self.enable_network = enable_network
        self.requests = []
        self.downloads = []

    async def fetch_bytes(self, url, headers=None):
        if not self.enable_network:
            raise NetworkDisabled(f"Network access disabled by the environment; can't reach {url}")
        self.requests.append(url)
        if url not in self.routes:
            raise HttpError(f"Server answered with HTTP 404 when performing the request to {url}")
        body = self.routes[url]
        if isinstance(body, bytes):
            return body
        return json.dumps(body).encode("utf-8")

    async def fetch_json(self, url, headers=None):
        return json.loads(await self.fetch_bytes(url, headers))

    async def download(self, url, destination, hashers=()):
        data = await self.fetch_bytes(url)
        self.downloads.append(url)
        # yield so that concurrent installs interleave
        await asyncio.sleep(0)
        with open(destination, "wb") as fh:
            fh.write(data)
        for hasher in hashers:
            hasher.update(data)
        return len(data)

    async def start(self):
        pass

    async def stop(self):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()


def make_tgz(files, top="package"):
    """Build a gzipped tarball; every file sits under a top-level folder."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        folder = tarfile.TarInfo(top)
        folder.type = tarfile.DIRTYPE
        folder.mode = 0o755
        archive.addfile(folder)
        for name, content in files.items():
            data = content.encode("utf-8") if isinstance(content, str) else content
            info = tarfile.TarInfo(f"{top}/{name}")
            info.size = len(data)
            info.mode = 0o755
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def version_script(version, exit_code=0):
    """A script run by the stand-in interpreter, printing a version."""
    return (
        "import sys\n"
        "args = sys.argv[1:]\n"
        f"print({version!r} if args == ['--version'] else ' '.join(args))\n"
        f"sys.exit({exit_code})\n"
    )


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a private cache, with signature checks off."""
    return BrokerSettings(
        install_root=str(tmp_path / "cache"),
        integrity_keys="0",
        node_path=sys.executable,
    )


@pytest.fixture
def fake_http():
    return FakeHttp()


class ArtifactServer(threading.Thread):
    """Serves canned bodies over real HTTP from a background event loop."""

    def __init__(self, routes, delay=0.2):
        super().__init__(daemon=True)
        self.routes = dict(routes)
        self.delay = delay
        self.hits = []
        self.port = None
        self._loop = None
        self._runner = None
        self._ready = threading.Event()
        self._error = None

    @property
    def base_url(self):
        return f"http://127.0.0.1:{self.port}"

    async def _handle(self, request):
        self.hits.append(request.path)
        # keep the response slow enough for concurrent clients to overlap
        await asyncio.sleep(self.delay)
        if request.path not in self.routes:
            return web.Response(status=404)
        return web.Response(body=self.routes[request.path])

    def run(self):
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        async def _start():
            app = web.Application()
            app.router.add_get("/{tail:.*}", self._handle)
            self._runner = web.AppRunner(app)
            await self._runner.setup()
            site = web.TCPSite(self._runner, "127.0.0.1", 0)
            await site.start()
            self.port = self._runner.addresses[0][1]

        try:
            self._loop.run_until_complete(_start())
        except Exception as exc:
            self._error = exc
            self._ready.set()
            return

        self._ready.set()
        self._loop.run_forever()

    def wait_for_start(self, timeout=10.0):
        self._ready.wait(timeout=timeout)
        if self._error is not None:
            raise self._error

    def shutdown(self):
        if self._loop is None or self._runner is None:
            return
        future = asyncio.run_coroutine_threadsafe(self._runner.cleanup(), self._loop)
        future.result(timeout=5.0)
        self._loop.call_soon_threadsafe(self._loop.stop)
        self.join(timeout=5.0)
        self._loop.close()


@pytest.fixture
def artifact_server():
    """Start an ArtifactServer; routes are set by the test before requests."""
    server = ArtifactServer({})
    server.start()
    server.wait_for_start()
    yield server
    server.shutdown()
