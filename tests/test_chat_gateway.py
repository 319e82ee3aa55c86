"""Tests for the QVoiceTxt HTTP gateway."""

import base64
import struct
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from qvoice_gateway.server import create_app
from qvoice_orchestrator.runtime import build_runtime


@pytest.fixture
def client(config):
    app = create_app(config, run_scheduler=False)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def runtime(client):
    return client.app.state.runtime


class TestSessionEndpoints:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["phase"] == "READY"
        assert data["scheduler"]["running"] is False

    def test_session_status(self, client):
        data = client.get("/v1/session").json()
        assert data["phase"] == "READY"
        assert data["secure"] is True
        assert data["user_id"].startswith("anon-")
        assert data["status"] == "Secure channel established."

    def test_token_list(self, client):
        data = client.get("/v1/tokens").json()
        assert data["object"] == "list"
        assert data["data"][0] == "Hello."
        assert len(data["data"]) == 13


class TestMessagesEndpoint:
    def test_submit_command(self, client):
        response = client.post("/v1/messages", json={"text": "/help"})
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "handled"
        assert data["classification"] == "command"
        assert data["reply"].startswith("Available commands:")

    def test_submit_token_and_read_back_decoded(self, client):
        response = client.post("/v1/messages", json={"text": "how are you?"})
        assert response.json()["status"] == "tokenized"
        assert response.json()["token_index"] == 1

        messages = client.get("/v1/messages").json()["data"]
        assert messages[-1]["is_tokenized"] is True
        assert messages[-1]["text"] == "How are you?"

    def test_submit_empty_text(self, client):
        response = client.post("/v1/messages", json={"text": "   "})
        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Message text cannot be empty"

    def test_submit_missing_field(self, client):
        response = client.post("/v1/messages", json={})
        assert response.status_code == 422

    def test_submit_when_not_ready(self, client, runtime):
        runtime.session.reset()
        response = client.post("/v1/messages", json={"text": "/help"})
        assert response.status_code == 503

    def test_submit_when_busy(self, client, runtime):
        runtime.session._busy = True
        try:
            response = client.post("/v1/messages", json={"text": "/help"})
        finally:
            runtime.session._busy = False
        assert response.status_code == 409

    def test_list_with_limit(self, client):
        for text in ("/help", "/tokenlist"):
            client.post("/v1/messages", json={"text": text})
        messages = client.get("/v1/messages", params={"limit": 2}).json()["data"]
        assert [m["text"].split(":")[0] for m in messages] == ["/tokenlist", "🔢 Token dictionary"]

    def test_list_rejects_bad_limit(self, client):
        assert client.get("/v1/messages", params={"limit": 0}).status_code == 400

    def test_archive_flow_over_http(self, client, runtime):
        client.post("/v1/messages", json={"text": "/archive"})
        reply = client.post("/v1/messages", json={"text": "yes"}).json()["reply"]
        assert reply.startswith("💾 Conversation archived")
        assert len(runtime.store.list_archives()) == 1


class TestSpeechEndpoint:
    def test_empty_text(self, client):
        assert client.post("/v1/speech", json={"text": " "}).status_code == 400

    def test_offline_speech_fails_with_502(self, client):
        response = client.post("/v1/speech", json={"text": "hello"})
        assert response.status_code == 502

    def test_live_speech_returns_wav(self, client, runtime):
        pcm = b"\x01\x00" * 4
        audio_body = {
            "candidates": [
                {
                    "content": {
                        "parts": [
                            {
                                "inlineData": {
                                    "data": base64.b64encode(pcm).decode(),
                                    "mimeType": "audio/L16;codec=pcm;rate=24000",
                                }
                            }
                        ]
                    }
                }
            ]
        }
        gateway = AsyncMock()
        gateway.call.return_value = audio_body
        runtime.agent.gateway = gateway
        runtime.agent.api_key = "test-key"

        response = client.post("/v1/speech", json={"text": "hello"})

        assert response.status_code == 200
        assert response.headers["content-type"] == "audio/wav"
        assert response.content[:4] == b"RIFF"
        assert struct.unpack("<I", response.content[24:28])[0] == 24000
        assert response.content[44:] == pcm


def test_store_unreachable_at_startup_fails(config):
    def broken_runtime(cfg):
        def broken_store():
            raise OSError("disk unavailable")

        return build_runtime(cfg, store_factory=broken_store)

    app = create_app(config, runtime_factory=broken_runtime, run_scheduler=False)
    with pytest.raises(Exception):
        with TestClient(app):
            pass


def test_live_chat_through_gateway(config):
    def live_runtime(cfg):
        gateway = AsyncMock()
        gateway.call.return_value = "It is sunny."
        gateway.close = AsyncMock()
        runtime = build_runtime(cfg, gateway=gateway)
        runtime.agent.gateway = gateway
        runtime.agent.api_key = "test-key"
        return runtime

    app = create_app(config, runtime_factory=live_runtime, run_scheduler=False)
    with TestClient(app) as client:
        data = client.post("/v1/messages", json={"text": "weather in Paris"}).json()
        runtime = client.app.state.runtime
        endpoint = runtime.agent.gateway.call.await_args.args[0]

    assert data["reply"] == "It is sunny."
    assert endpoint.endswith(":generateContent?key=test-key")
