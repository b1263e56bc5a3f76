# tests/conftest.py

import asyncio
from collections import Counter

import pytest
from aiohttp import web

from config import Settings

SUB_FLOW = """\
proxies:
  - {name: "HK-01", type: ss, server: hk.example.com, port: 443, cipher: aes-128-gcm, password: pw}
  - {name: "US-01", type: ss, server: us.example.com, port: 443, cipher: aes-128-gcm, password: pw}
"""

SUB_BLOCK = """\
port: 7890
proxies:
  - name: "🇯🇵 Japan Hy2"
    type: hysteria2
    server: jp.example.com
    port: 8443
    password: secret
    obfs: salamander
    obfs-password: "long-obfs-secret"
    sni: jp.example.com
    skip-cert-verify: true
    alpn:
      - h3
  - name: TW-02
    type: trojan
    server: tw.example.com
    port: 443
    password: pw
    sni: tw.example.com
proxy-groups:
  - name: PROXY
    type: select
    proxies:
      - TW-02
rules:
  - MATCH,PROXY
"""

SUB_RELAY = """\
proxies:
  - {name: "Relay", type: ss, server: relay.example.com, port: 443, cipher: aes-128-gcm, password: pw}
"""

SUB_EXPIRED = """\
proxies:
  - {name: "到期-Relay", type: ss, server: a.example.com, port: 443, cipher: aes-128-gcm, password: pw}
  - {name: "剩余流量：10GB", type: ss, server: b.example.com, port: 443, cipher: aes-128-gcm, password: pw}
"""

SUBSCRIPTIONS = {
    "https://airport-a.example/sub": (SUB_FLOW, "upload=100;download=200;total=1000;expire=1999999999"),
    "https://airport-b.example/sub": (SUB_BLOCK, "upload=50; download=50; total=2000; expire=1899999999"),
    "https://airport-relay-1.example/sub": (SUB_RELAY, None),
    "https://airport-relay-2.example/sub": (SUB_RELAY, "upload=1;download=1;total=0"),
    "https://airport-expired.example/sub": (SUB_EXPIRED, None),
}

HITS = web.AppKey("hits", Counter)
AGENTS = web.AppKey("agents", list)


def _reply(request: web.Request, source: str) -> web.Response:
    entry = SUBSCRIPTIONS.get(source)
    if entry is None:
        return web.Response(status=404, text="not found")
    text, header = entry
    headers = {"Subscription-Userinfo": header} if header else {}
    return web.Response(text=text, headers=headers)


async def backend_handler(request: web.Request) -> web.Response:
    backend = request.match_info["backend"]
    request.app[HITS][backend] += 1
    request.app[AGENTS].append(request.headers.get("User-Agent"))

    if backend == "bad":
        return web.Response(status=502, text="bad gateway")
    if backend == "junk":
        return web.Response(text="<html>hello</html>")
    if backend == "empty":
        return web.Response(text="proxies:\n")
    if backend == "slow":
        await asyncio.sleep(1)
    return _reply(request, request.query.get("url", ""))


async def direct_handler(request: web.Request) -> web.Response:
    request.app[HITS]["direct"] += 1
    request.app[AGENTS].append(request.headers.get("User-Agent"))
    return _reply(request, f"https://{request.match_info['name']}.example/sub")


@pytest.fixture
async def backend(aiohttp_server):
    """本地假后端：/{backend}/sub 模拟转换后端，/direct/{name} 模拟订阅地址。"""
    app = web.Application()
    app[HITS] = Counter()
    app[AGENTS] = []
    app.router.add_get("/direct/{name}", direct_handler)
    app.router.add_get("/{backend}/sub", backend_handler)
    return await aiohttp_server(app)


@pytest.fixture
def make_settings(backend):
    def factory(backends=("good",), **overrides):
        values = {
            "backend_urls": tuple(str(backend.make_url(f"/{b}/sub")) for b in backends),
            "fetch_timeout": 5,
        }
        values.update(overrides)
        return Settings(**values)
    return factory
