"""
Shared fixtures: settings, a stub plugin binary and a fake plugin host.
"""

import hashlib
import json
import sys
import textwrap
from pathlib import Path

import httpx
import pytest

from binplug.config import Settings

API_BASE = "https://api.test"
PLUGIN_BASE = "https://plugins.test"

STUB_PLUGIN = '''\
#!{python}
import json
import os
import socket
import sys
import time

COOKIE_KEY = {cookie_key!r}
COOKIE_VALUE = {cookie_value!r}
MODE = {mode!r}

PID_FILE = os.environ.get("BINPLUG_TEST_PID_FILE")
if PID_FILE:
    with open(PID_FILE, "w") as f:
        f.write(str(os.getpid()))

if os.environ.get(COOKIE_KEY) != COOKIE_VALUE:
    sys.stderr.write("This binary is a plugin and is not meant to be executed directly.\\n")
    sys.exit(1)

if MODE == "silent":
    time.sleep(60)
    sys.exit(0)

if MODE == "longline":
    sys.stdout.write("x" * 100000 + "\\n")
    sys.stdout.flush()
    time.sleep(60)
    sys.exit(0)

srv = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
srv.bind(("127.0.0.1", 0))
srv.listen(1)
port = srv.getsockname()[1]
app_version = 2 if MODE == "future" else 1
sys.stdout.write("1|%d|tcp|127.0.0.1:%d|jsonrpc\\n" % (app_version, port))
sys.stdout.flush()

conn, _ = srv.accept()
stream = conn.makefile("rwb")
for line in stream:
    request = json.loads(line)
    response = {{"jsonrpc": "2.0", "id": [request["id"]] if MODE == "badid" else request["id"]}}
    args = (request.get("params") or {{}}).get("args", [])
    if request["method"] != "main.RunCommand":
        response["error"] = {{"code": -32601, "message": "method not found"}}
    elif args[:1] == ["fail"]:
        response["error"] = {{"code": 1, "message": "boom: " + " ".join(args[1:])}}
    elif args[:1] == ["hang"]:
        time.sleep(60)
        response["result"] = None
    else:
        sys.stdout.write("plugin says hi\\n")
        sys.stdout.flush()
        sys.stderr.write("plugin warns\\n")
        sys.stderr.flush()
        response["result"] = args
    stream.write((json.dumps(response) + "\\n").encode())
    stream.flush()
'''


def stub_plugin_source(shortname: str, secret: str, mode: str = "echo") -> bytes:
    """Source of an executable stub plugin that echoes its argv."""
    return STUB_PLUGIN.format(
        python=sys.executable,
        cookie_key=f"plugin_{shortname}",
        cookie_value=secret,
        mode=mode,
    ).encode()


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def manifest_toml(shortname: str, binary: str, secret: str, releases: list[dict]) -> str:
    """Render a plugins.toml with one plugin."""
    lines = [
        "[[Plugin]]",
        f'  Shortname = "{shortname}"',
        f'  Binary = "{binary}"',
        f'  MagicCookieValue = "{secret}"',
    ]
    for release in releases:
        lines += [
            "",
            "  [[Plugin.Release]]",
            f'    Arch = "{release["arch"]}"',
            f'    OS = "{release["os"]}"',
            f'    Version = "{release["version"]}"',
            f'    Sum = "{release["sum"]}"',
        ]
    return "\n".join(lines) + "\n"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        config_root=tmp_path / "config",
        api_base_url=API_BASE,
        api_key="sk_test_123",
        handshake_timeout=5.0,
        kill_grace=0.5,
    )


@pytest.fixture
def write_plugin(tmp_path: Path):
    """Write an executable stub plugin and return its path."""

    def _write(path: Path, shortname: str = "echo", secret: str = "s3cret", mode: str = "echo") -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(stub_plugin_source(shortname, secret, mode))
        path.chmod(0o755)
        return path

    return _write


class FakePluginHost:
    """
    In-memory plugin host served through httpx.MockTransport.

    Attributes:
        files: URL path -> body served under PLUGIN_BASE
        requests: Every request seen, in order
    """

    def __init__(self):
        self.files: dict[str, bytes] = {}
        self.requests: list[httpx.Request] = []
        self.fail_status: dict[str, int] = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)

        if url == f"{API_BASE}/v1/plugins/metadata":
            return httpx.Response(200, json={"plugin_base_url": PLUGIN_BASE})

        if url.startswith(PLUGIN_BASE):
            path = url[len(PLUGIN_BASE):]
            if path in self.fail_status:
                return httpx.Response(self.fail_status[path])
            if path in self.files:
                return httpx.Response(200, content=self.files[path])

        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def downloads(self) -> list[str]:
        return [str(r.url) for r in self.requests if str(r.url).startswith(PLUGIN_BASE)]


@pytest.fixture
def host() -> FakePluginHost:
    return FakePluginHost()


def dedent(text: str) -> str:
    return textwrap.dedent(text).lstrip()


def json_line(obj) -> bytes:
    return (json.dumps(obj) + "\n").encode()
