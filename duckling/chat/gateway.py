"""AI gateway — talks to the chat-completion service on the pet's behalf.

Builds each request from the persona prompt, the stored conversation and the
new user turn (optionally with a screenshot attached), and only remembers an
exchange once the service has answered. Failed exchanges leave the history
untouched and come back to the caller as a localized apology.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

import httpx

from duckling.capture import ScreenCapture, ScreenshotArchive
from duckling.chat.history import ConversationStore
from duckling.chat.persona import persona_prompt
from duckling.config import Settings
from duckling.errors import (
    CredentialMissing,
    PersistenceFailure,
    TransportFailure,
    ValidationError,
)
from duckling.i18n import Localizer
from duckling.storage.preferences import PreferenceStore

logger = logging.getLogger(__name__)

API_KEY_KEY = "chatgpt_api_key"
PET_NAME_KEY = "duck_name"

ApiKeyStatus = Literal["not_configured", "configured", "invalid"]


def build_openai_headers(api_key: str) -> dict[str, str]:
    return {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {api_key}",
    }


class AIGateway:
    """Formats chat-completion requests and keeps the conversation memory."""

    def __init__(
        self,
        settings: Settings,
        history: ConversationStore,
        store: PreferenceStore,
        localizer: Localizer,
        http_client: httpx.AsyncClient | None = None,
        *,
        capture: ScreenCapture | None = None,
        archive: ScreenshotArchive | None = None,
    ) -> None:
        self._settings = settings
        self.history = history
        self._store = store
        self._i18n = localizer
        self._http = http_client
        self._capture = capture
        self._archive = archive
        self._api_key: str = ""
        self._pet_name: str | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    async def load(self) -> None:
        """Load the saved key, pet name and conversation history."""
        try:
            self._api_key = (await self._store.get_string(API_KEY_KEY) or "").strip()
            self._pet_name = await self._store.get_string(PET_NAME_KEY)
        except PersistenceFailure:
            logger.warning("Could not load chat settings")
        count = await self.history.load()
        logger.info("Chat gateway ready (%d stored turns, key %s)", count, self.api_key_status())

    @property
    def api_key(self) -> str:
        return self._api_key or self._settings.openai_api_key

    @property
    def pet_name(self) -> str | None:
        return self._pet_name

    @property
    def localizer(self) -> Localizer:
        return self._i18n

    def has_credential(self) -> bool:
        return bool(self.api_key)

    def api_key_status(self) -> ApiKeyStatus:
        """Quick format check: OpenAI secret keys start with 'sk-'."""
        key = self.api_key
        if not key:
            return "not_configured"
        if key.startswith("sk-") and len(key) > 20:
            return "configured"
        return "invalid"

    async def set_api_key(self, api_key: str) -> None:
        self._api_key = api_key.strip()
        try:
            await self._store.set_string(API_KEY_KEY, self._api_key)
        except PersistenceFailure:
            logger.warning("Could not persist API key; using it for this session only")

    async def set_pet_name(self, name: str) -> None:
        self._pet_name = name.strip() or None
        try:
            if self._pet_name:
                await self._store.set_string(PET_NAME_KEY, self._pet_name)
            else:
                await self._store.remove(PET_NAME_KEY)
        except PersistenceFailure:
            logger.warning("Could not persist pet name")

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    def validate(self, text: str) -> None:
        """Raise ValidationError unless 1 <= len(text) <= message_max_length."""
        if not text:
            raise ValidationError("empty", self._i18n.get("empty_message"))
        if len(text) > self._settings.message_max_length:
            raise ValidationError("too_long", self._i18n.get("message_too_long"))

    async def send_message(self, text: str, attach_context: bool = False) -> str:
        """Send one user turn and return the reply text.

        Raises ValidationError for empty or over-long input. Every other
        failure is returned as a localized message and leaves history as is.
        """
        self.validate(text)
        generation = self.history.generation
        try:
            api_key = self._require_key()
            image = await self._capture_context() if attach_context else None
            messages = self.build_messages(text, image)
            reply = await self._complete(api_key, messages)
        except CredentialMissing:
            logger.info("Chat skipped: no API key configured")
            return self._i18n.get("no_api_key")
        except TransportFailure as exc:
            logger.warning("Chat request failed: %s", exc)
            return self._i18n.get("error_chat")

        if self._closed:
            logger.info("Discarding chat reply that arrived after shutdown")
            return self._i18n.get("error_chat")

        if self.history.generation != generation:
            logger.info("History was cleared while waiting for a reply; not storing exchange")
            return reply

        self.history.append("user", text)
        self.history.append("assistant", reply)
        await self.history.save()
        return reply

    async def clear_history(self) -> None:
        await self.history.clear()
        logger.info("Conversation history cleared")

    def build_messages(self, text: str, image_base64: str | None = None) -> list[dict[str, Any]]:
        """System persona, the stored turns, then the new user turn."""
        messages: list[dict[str, Any]] = [{
            "role": "system",
            "content": persona_prompt(self._i18n.language, self._pet_name),
        }]
        messages.extend(self.history.as_messages()[-self.history.limit:])
        if image_base64:
            messages.append({
                "role": "user",
                "content": [
                    {"type": "text", "text": text},
                    {
                        "type": "image_url",
                        "image_url": {"url": f"data:image/png;base64,{image_base64}"},
                    },
                ],
            })
        else:
            messages.append({"role": "user", "content": text})
        return messages

    async def close(self) -> None:
        """Stop accepting replies; anything still in flight is discarded."""
        self._closed = True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_key(self) -> str:
        key = self.api_key
        if not key:
            raise CredentialMissing("No chat-completion API key configured")
        return key

    async def _capture_context(self) -> str | None:
        if self._capture is None:
            return None
        try:
            image = await self._capture.capture()
        except Exception:
            logger.warning("Screen capture failed, sending text only", exc_info=True)
            return None
        if image is None:
            logger.debug("No screen capture available, sending text only")
            return None
        if self._archive is not None:
            await self._archive.save(image)
        return image

    async def _complete(self, api_key: str, messages: list[dict[str, Any]]) -> str:
        if self._http is None:
            raise TransportFailure("No HTTP client configured")

        try:
            response = await self._http.post(
                f"{self._settings.api_base_url}/v1/chat/completions",
                json={
                    "model": self._settings.model,
                    "messages": messages,
                    "max_tokens": self._settings.max_tokens,
                    "temperature": self._settings.temperature,
                },
                headers=build_openai_headers(api_key),
            )
        except httpx.HTTPError as exc:
            raise TransportFailure(f"{type(exc).__name__}: {exc}") from exc

        if response.status_code != 200:
            raise TransportFailure(f"HTTP {response.status_code}: {response.text[:200]}")

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise TransportFailure(f"Malformed completion body: {exc}") from exc

        if not isinstance(content, str) or not content.strip():
            raise TransportFailure("Empty completion")
        return content.strip()
