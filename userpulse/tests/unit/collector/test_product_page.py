import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from userpulse.collector.product_page import fetch_page_text, html_to_text
from userpulse.core.errors import UpstreamUnavailable

HOME = """
<html>
  <head><title>Acme</title><style>body { color: red; }</style></head>
  <body>
    <nav>Pricing | Docs | Login</nav>
    <h1>Acme</h1>
    <p>Fast CI   for
       monorepos.</p>
    <script>track("visit")</script>
    <footer>© Acme Inc.</footer>
  </body>
</html>
"""


@pytest_asyncio.fixture
async def page_server():
    async def home(request):
        return web.Response(text=HOME, content_type="text/html")

    async def blank(request):
        return web.Response(text="<html><script>x()</script></html>", content_type="text/html")

    async def missing(request):
        return web.Response(status=404)

    app = web.Application()
    app.router.add_get("/", home)
    app.router.add_get("/blank", blank)
    app.router.add_get("/missing", missing)
    server = test_utils.TestServer(app)
    await server.start_server()
    yield server
    await server.close()


def test_html_to_text_keeps_visible_copy_only():
    text = html_to_text(HOME)

    assert text == "Acme Acme Fast CI for monorepos."


@pytest.mark.asyncio
async def test_fetch_page_text(page_server):
    text = await fetch_page_text(str(page_server.make_url("/")))

    assert "Fast CI for monorepos." in text
    assert "track" not in text


@pytest.mark.asyncio
async def test_fetch_page_text_truncates(page_server):
    text = await fetch_page_text(str(page_server.make_url("/")), max_chars=4)

    assert text == "Acme"


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/missing", "/blank"])
async def test_unusable_pages_raise(page_server, path):
    with pytest.raises(UpstreamUnavailable):
        await fetch_page_text(str(page_server.make_url(path)))


@pytest.mark.asyncio
async def test_unreachable_host_raises():
    with pytest.raises(UpstreamUnavailable):
        await fetch_page_text("http://127.0.0.1:1/", timeout=2)
