"""Tests for AIGateway - validation, request shape and failure handling.

The chat-completion service is replaced by httpx.MockTransport so every
request body the gateway sends can be inspected.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from duckling.capture import ScreenshotArchive
from duckling.chat.gateway import API_KEY_KEY, PET_NAME_KEY, AIGateway
from duckling.chat.history import ConversationStore
from duckling.config import Settings
from duckling.errors import ValidationError

from conftest import VALID_KEY, FakeClock, completion

PNG_B64 = "iVBORw0KGgo="


class FakeCapture:
    def __init__(self, image: str | None = PNG_B64, error: Exception | None = None) -> None:
        self.image = image
        self.error = error

    async def capture(self) -> str | None:
        if self.error is not None:
            raise self.error
        return self.image


def _make_gateway(settings, store, localizer, http_client, **kwargs) -> AIGateway:
    history = ConversationStore(store, settings.history_limit)
    return AIGateway(settings, history, store, localizer, http_client, **kwargs)


class TestValidation:
    async def test_empty_message_rejected(self, gateway, service):
        with pytest.raises(ValidationError) as exc_info:
            await gateway.send_message("")
        assert exc_info.value.reason == "empty"
        assert exc_info.value.message == "Please type something first!"
        assert service.requests == []
        assert gateway.history.get_history_length() == 0

    async def test_too_long_message_rejected(self, gateway, service):
        with pytest.raises(ValidationError) as exc_info:
            await gateway.send_message("q" * 51)
        assert exc_info.value.reason == "too_long"
        assert service.requests == []
        assert gateway.history.get_history_length() == 0

    async def test_max_length_message_accepted(self, gateway, service):
        await gateway.send_message("q" * 50)
        assert len(service.requests) == 1

    async def test_validation_error_is_a_value_error(self, gateway):
        with pytest.raises(ValueError):
            gateway.validate("")


class TestSendMessage:
    async def test_success_appends_both_turns(self, gateway, service, store):
        reply = await gateway.send_message("hello duck")
        assert reply == "Quack! Hello friend!"
        assert gateway.history.as_messages() == [
            {"role": "user", "content": "hello duck"},
            {"role": "assistant", "content": "Quack! Hello friend!"},
        ]
        saved = json.loads(await store.get_string("conversation_history"))
        assert len(saved) == 2

    async def test_request_shape(self, gateway, service, settings):
        await gateway.send_message("hello duck")
        body = service.last
        assert body["model"] == settings.model
        assert body["max_tokens"] == 150
        assert body["temperature"] == 0.7
        assert body["messages"][0]["role"] == "system"
        assert "tamagotchi duck" in body["messages"][0]["content"]
        assert body["messages"][-1] == {"role": "user", "content": "hello duck"}
        assert service.headers[-1]["authorization"] == f"Bearer {VALID_KEY}"

    async def test_history_is_sent_in_order(self, gateway, service):
        await gateway.send_message("first")
        await gateway.send_message("second")
        roles = [m["role"] for m in service.last["messages"]]
        assert roles == ["system", "user", "assistant", "user"]
        assert service.last["messages"][1]["content"] == "first"

    async def test_history_window_is_capped(self, gateway, service):
        for i in range(20):
            await gateway.send_message(f"msg {i}")
        assert gateway.history.get_history_length() == 30
        await gateway.send_message("latest")
        # system + 30 stored turns + new user turn
        assert len(service.last["messages"]) == 32

    async def test_clear_history_then_send(self, gateway, service, store):
        for i in range(5):
            await gateway.send_message(f"turn {i}")
        await gateway.clear_history()
        assert await store.get_string("conversation_history") is None

        await gateway.send_message("fresh start")
        messages = service.last["messages"]
        assert len(messages) == 2
        assert messages[1] == {"role": "user", "content": "fresh start"}

    async def test_reply_is_stripped(self, gateway, service):
        service.reply = "  quack  \n"
        assert await gateway.send_message("hi") == "quack"


class TestFailures:
    async def test_no_api_key(self, settings, store, localizer, http_client, service):
        gw = _make_gateway(settings, store, localizer, http_client)
        reply = await gw.send_message("hi")
        assert reply == "Please add your ChatGPT API key in settings to chat with me!"
        assert service.requests == []
        assert gw.history.get_history_length() == 0

    @pytest.mark.parametrize("status_code", [401, 429, 500])
    async def test_error_status_leaves_history(self, gateway, service, status_code):
        service.status_code = status_code
        service.body = {"error": {"message": "nope"}}
        reply = await gateway.send_message("hi")
        assert reply == "Sorry, I couldn't respond right now."
        assert gateway.history.get_history_length() == 0

    async def test_transport_error(self, gateway, service):
        service.error = httpx.ConnectError("connection refused")
        reply = await gateway.send_message("hi")
        assert reply == "Sorry, I couldn't respond right now."
        assert gateway.history.get_history_length() == 0

    @pytest.mark.parametrize(
        "body",
        [
            {},
            {"choices": []},
            {"choices": [{"message": {}}]},
            {"choices": [{"message": {"content": "   "}}]},
        ],
    )
    async def test_malformed_completion(self, gateway, service, body):
        service.body = body
        assert await gateway.send_message("hi") == "Sorry, I couldn't respond right now."
        assert gateway.history.get_history_length() == 0

    async def test_failure_is_localized(self, gateway, service, localizer):
        await localizer.set_language("pt_BR")
        service.status_code = 500
        assert await gateway.send_message("oi") == "Desculpe, não consegui responder agora."

    async def test_reply_after_close_is_discarded(self, settings, store, localizer):
        gateway: AIGateway | None = None

        async def slow_service(request: httpx.Request) -> httpx.Response:
            await gateway.close()
            return httpx.Response(200, json=completion("too late"))

        async with httpx.AsyncClient(transport=httpx.MockTransport(slow_service)) as client:
            gateway = _make_gateway(settings, store, localizer, client)
            await gateway.set_api_key(VALID_KEY)
            reply = await gateway.send_message("hi")

        assert reply == "Sorry, I couldn't respond right now."
        assert gateway.history.get_history_length() == 0

    async def test_clear_during_request_forgets_exchange(self, settings, store, localizer):
        started = asyncio.Event()
        release = asyncio.Event()
        requests: list[dict] = []

        async def gated_service(request: httpx.Request) -> httpx.Response:
            requests.append(json.loads(request.content))
            started.set()
            await release.wait()
            return httpx.Response(200, json=completion("late reply"))

        async with httpx.AsyncClient(transport=httpx.MockTransport(gated_service)) as client:
            gateway = _make_gateway(settings, store, localizer, client)
            await gateway.set_api_key(VALID_KEY)
            pending = asyncio.create_task(gateway.send_message("hello"))
            await started.wait()
            await gateway.clear_history()
            release.set()
            reply = await pending

            assert reply == "late reply"
            assert gateway.history.get_history_length() == 0
            assert await store.get_string("conversation_history") is None

            release.clear()
            started.clear()
            next_turn = asyncio.create_task(gateway.send_message("again"))
            await started.wait()
            release.set()
            await next_turn

        assert [m["role"] for m in requests[-1]["messages"]] == ["system", "user"]
        assert gateway.history.as_messages() == [
            {"role": "user", "content": "again"},
            {"role": "assistant", "content": "late reply"},
        ]


class TestScreenContext:
    async def test_image_is_attached(self, settings, store, localizer, http_client, service):
        gw = _make_gateway(settings, store, localizer, http_client, capture=FakeCapture())
        await gw.set_api_key(VALID_KEY)
        await gw.send_message("what am I doing?", attach_context=True)

        content = service.last["messages"][-1]["content"]
        assert content[0] == {"type": "text", "text": "what am I doing?"}
        assert content[1]["type"] == "image_url"
        assert content[1]["image_url"]["url"] == f"data:image/png;base64,{PNG_B64}"
        # Only the text is remembered
        assert gw.history.as_messages()[0] == {"role": "user", "content": "what am I doing?"}

    async def test_no_image_without_context_flag(self, settings, store, localizer, http_client, service):
        gw = _make_gateway(settings, store, localizer, http_client, capture=FakeCapture())
        await gw.set_api_key(VALID_KEY)
        await gw.send_message("hi")
        assert service.last["messages"][-1]["content"] == "hi"

    @pytest.mark.parametrize(
        "capture",
        [FakeCapture(image=None), FakeCapture(error=RuntimeError("no display"))],
    )
    async def test_capture_unavailable_sends_text(
        self, settings, store, localizer, http_client, service, capture
    ):
        gw = _make_gateway(settings, store, localizer, http_client, capture=capture)
        await gw.set_api_key(VALID_KEY)
        reply = await gw.send_message("hi", attach_context=True)
        assert reply == "Quack! Hello friend!"
        assert service.last["messages"][-1]["content"] == "hi"

    async def test_capture_is_archived(self, settings, store, localizer, http_client, tmp_path):
        archive = ScreenshotArchive(tmp_path, clock=FakeClock())
        gw = _make_gateway(
            settings, store, localizer, http_client, capture=FakeCapture(), archive=archive
        )
        await gw.set_api_key(VALID_KEY)
        await gw.send_message("look", attach_context=True)
        assert len(list(tmp_path.glob("screenshot_*.png"))) == 1


class TestConfiguration:
    @pytest.mark.parametrize(
        "key, status",
        [
            ("", "not_configured"),
            ("abc", "invalid"),
            ("sk-short", "invalid"),
            (VALID_KEY, "configured"),
        ],
    )
    async def test_api_key_status(self, settings, store, localizer, key, status):
        gw = _make_gateway(settings, store, localizer, None)
        await gw.set_api_key(key)
        assert gw.api_key_status() == status

    async def test_environment_key_is_fallback(self, store, localizer):
        settings = Settings(db_url="sqlite+aiosqlite:///:memory:", OPENAI_API_KEY=VALID_KEY)
        gw = _make_gateway(settings, store, localizer, None)
        assert gw.has_credential()
        await gw.set_api_key("sk-saved-key-0123456789abc")
        assert gw.api_key == "sk-saved-key-0123456789abc"

    async def test_load_restores_saved_state(self, settings, store, localizer, http_client):
        await store.set_string(API_KEY_KEY, f"  {VALID_KEY}  ")
        await store.set_string(PET_NAME_KEY, "Bill")
        await store.set_string(
            "conversation_history",
            json.dumps([{"role": "user", "content": "hi"}, {"role": "assistant", "content": "quack"}]),
        )
        gw = _make_gateway(settings, store, localizer, http_client)
        await gw.load()
        assert gw.api_key == VALID_KEY
        assert gw.pet_name == "Bill"
        assert gw.history.get_history_length() == 2

    async def test_pet_name_in_persona(self, gateway, service, store):
        await gateway.set_pet_name("Bill")
        await gateway.send_message("hi")
        assert "Its name is Bill." in service.last["messages"][0]["content"]

        await gateway.set_pet_name("   ")
        assert await store.get_string(PET_NAME_KEY) is None
        await gateway.send_message("hi again")
        assert "It does not have a name." in service.last["messages"][0]["content"]

    async def test_persona_follows_language(self, gateway, service, localizer):
        await localizer.set_language("pt_BR")
        await gateway.send_message("oi")
        assert "pato tamagotchi" in service.last["messages"][0]["content"]
