"""
Fixtures compartidas para las pruebas del gateway.
"""

import pytest

from app import GatewayConfig, create_app
from services.whatsapp_client import WhatsAppClient, WhatsAppClientError


class FakeWhatsAppClient(WhatsAppClient):
    """
    Cliente que no habla con ningún bridge.

    Conserva el registro de eventos real (on/emit) y sustituye las
    operaciones por respuestas configurables.
    """

    def __init__(self):
        super().__init__(base_url="http://bridge.test", timeout=1)
        self.registered = True
        self.fail_with = None
        self.initialize_calls = 0
        self.sent = []
        self.logged_out = False

    def _maybe_fail(self):
        if self.fail_with is not None:
            raise WhatsAppClientError(self.fail_with)

    def initialize(self):
        self.initialize_calls += 1

    def is_registered_user(self, address):
        self._maybe_fail()
        return self.registered

    def send_message(self, address, text):
        self._maybe_fail()
        self.sent.append((address, text))
        return "3EB0C767D26A1D4A5B0E"

    def send_media(self, address, media=None, media_url=None, caption=None):
        self._maybe_fail()
        self.sent.append((address, media or media_url, caption))
        return "3EB0MEDIA0001"

    def logout(self):
        self._maybe_fail()
        self.logged_out = True


@pytest.fixture
def fake_client():
    return FakeWhatsAppClient()


@pytest.fixture
def config():
    return GatewayConfig(reconnect_delay=60, webhook_token='s3cret')


@pytest.fixture
def app(config, fake_client):
    app = create_app(config, client=fake_client)
    app.testing = True
    yield app
    app.extensions['connection_tracker'].shutdown()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def tracker(app):
    return app.extensions['connection_tracker']


@pytest.fixture
def ready(fake_client):
    """Pone la sesión en estado listo."""
    fake_client.emit('ready')
    return fake_client
