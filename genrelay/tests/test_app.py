from fastapi.testclient import TestClient

from genrelay.app import APP_VERSION, create_app
from genrelay.chain import FallbackChainExecutor
from genrelay.providers.base import ProviderCandidate
from genrelay.providers.types import Capability, SyncResult
from genrelay.settings import load_settings


class Client:
    def __init__(self, name, enabled):
        self.name = name
        self.enabled = enabled

    async def submit(self, capability, data):
        return SyncResult("x")


class FakeTransport:
    def __init__(self):
        self.webhooks = []

    async def set_webhook(self, url):
        self.webhooks.append(url)
        return True


class FakeRouter:
    def __init__(self):
        self.updates = []
        self.transport = FakeTransport()
        self.executor = FallbackChainExecutor({
            Capability.TEXT_TO_IMAGE: [ProviderCandidate("pixabay", Client("pixabay", True))],
            Capability.TEXT_TO_SPEECH: [ProviderCandidate("elevenlabs", Client("elevenlabs", False))],
        })

    async def handle_update(self, update):
        self.updates.append(update)


def test_keepalive():
    app = create_app(load_settings({}))
    with TestClient(app) as client:
        r = client.get("/keepalive")
        assert r.status_code == 200
        assert r.text == "Belaynish alive"


def test_healthz_lists_configured_capabilities():
    app = create_app(load_settings({}), router=FakeRouter())
    with TestClient(app) as client:
        body = client.get("/healthz").json()
    assert body["status"] == "ok"
    assert body["version"] == APP_VERSION
    assert body["capabilities"] == ["text-to-image"]


def test_webhook_acknowledges_and_dispatches():
    router = FakeRouter()
    app = create_app(load_settings({}), router=router)
    update = {"update_id": 1, "message": {"chat": {"id": 5}, "from": {"id": 2}, "text": "/ai help"}}
    with TestClient(app) as client:
        r = client.post("/webhook", json=update)
        assert r.status_code == 200
        assert r.json() == {"ok": True}
    assert router.updates == [update]


def test_webhook_without_token_is_unavailable():
    app = create_app(load_settings({}))
    with TestClient(app) as client:
        r = client.post("/webhook", json={"update_id": 1})
    assert r.status_code == 503


def test_webhook_registered_on_startup():
    router = FakeRouter()
    settings = load_settings({"TELEGRAM_TOKEN": "123:abc", "BASE_URL": "https://bot.example.com/"})
    with TestClient(create_app(settings, router=router)):
        pass
    assert router.transport.webhooks == ["https://bot.example.com/webhook"]
