"""Engine-facing localized strings.

Only the lines the engine itself hands to collaborators live here (care
acknowledgements, need and death notices, chat errors). Lookup falls back to
en_US, then to the key itself.
"""

from __future__ import annotations

import logging

from duckling.errors import PersistenceFailure
from duckling.storage.preferences import PreferenceStore

logger = logging.getLogger(__name__)

LANGUAGE_KEY = "language"
DEFAULT_LANGUAGE = "en_US"

_STRINGS: dict[str, dict[str, str]] = {
    "en_US": {
        "hungry": "I'm hungry!",
        "dirty": "I need a bath!",
        "sad": "I'm bored!",
        "happy": "I'm happy!",
        "fed_message": "Yummy! Thank you for feeding me!",
        "cleaned_message": "Ah, much better! I'm clean now!",
        "played_message": "That was fun! I love playing!",
        "died_hunger": "I died of hunger... 😵",
        "died_dirty": "I died from being too dirty... 😵",
        "died_sadness": "I died of sadness... 😵",
        "explanation_hunger": "Ducks need to be fed regularly. Don't let the hunger bar run out!",
        "explanation_dirty": "Ducks need regular baths. Keep the cleanliness bar up!",
        "explanation_sadness": "Ducks need attention and play. Spend time with your duck!",
        "explanation_adequate_care": "Take good care of your duck so it stays healthy.",
        "warning_hunger": "Your duck is starving! Feed it soon or it may die.",
        "warning_dirty": "Your duck is filthy! Give it a bath soon or it may die.",
        "warning_sadness": "Your duck is very sad! Play with it soon or it may die.",
        "no_api_key": "Please add your ChatGPT API key in settings to chat with me!",
        "error_chat": "Sorry, I couldn't respond right now.",
        "auto_comment_intro": "Let me see what you're doing...",
        "auto_comment_error": "I can't see what you're doing right now.",
        "message_too_long": "Message too long! Max 50 characters.",
        "empty_message": "Please type something first!",
    },
    "pt_BR": {
        "hungry": "Estou com fome!",
        "dirty": "Preciso de um banho!",
        "sad": "Estou entediado!",
        "happy": "Estou feliz!",
        "fed_message": "Delícia! Obrigado por me alimentar!",
        "cleaned_message": "Ah, muito melhor! Estou limpo agora!",
        "played_message": "Foi divertido! Eu amo brincar!",
        "died_hunger": "Morri de fome... 😵",
        "died_dirty": "Morri por estar muito sujo... 😵",
        "died_sadness": "Morri de tristeza... 😵",
        "explanation_hunger": "Patos precisam ser alimentados regularmente. Não deixe a fome chegar a zero!",
        "explanation_dirty": "Patos precisam de banhos regulares. Mantenha a limpeza em dia!",
        "explanation_sadness": "Patos precisam de atenção e brincadeiras. Passe tempo com seu pato!",
        "explanation_adequate_care": "Cuide bem do seu pato para que ele continue saudável.",
        "warning_hunger": "Seu pato está faminto! Alimente-o logo ou ele pode morrer.",
        "warning_dirty": "Seu pato está imundo! Dê um banho logo ou ele pode morrer.",
        "warning_sadness": "Seu pato está muito triste! Brinque com ele logo ou ele pode morrer.",
        "no_api_key": "Por favor, adicione sua chave API do ChatGPT nas configurações para conversar comigo!",
        "error_chat": "Desculpe, não consegui responder agora.",
        "auto_comment_intro": "Deixe-me ver o que você está fazendo...",
        "auto_comment_error": "Não consigo ver o que você está fazendo agora.",
        "message_too_long": "Mensagem muito longa! Máx 50 caracteres.",
        "empty_message": "Por favor, digite algo primeiro!",
    },
}

SUPPORTED_LANGUAGES = tuple(_STRINGS)


class Localizer:
    """Current language plus string lookup. One instance per process."""

    def __init__(self, store: PreferenceStore, language: str = DEFAULT_LANGUAGE) -> None:
        self._store = store
        self._language = language if language in _STRINGS else DEFAULT_LANGUAGE

    @property
    def language(self) -> str:
        return self._language

    async def load(self) -> None:
        """Adopt the persisted language, keeping the current one if unset or unknown."""
        try:
            saved = await self._store.get_string(LANGUAGE_KEY)
        except PersistenceFailure:
            logger.warning("Could not load language, keeping %s", self._language)
            return
        if saved in _STRINGS:
            self._language = saved

    async def set_language(self, language: str) -> None:
        if language not in _STRINGS:
            raise ValueError(f"Unsupported language: {language}")
        self._language = language
        try:
            await self._store.set_string(LANGUAGE_KEY, language)
        except PersistenceFailure:
            logger.warning("Could not persist language %s", language)

    def get(self, key: str) -> str:
        return _STRINGS[self._language].get(key) or _STRINGS[DEFAULT_LANGUAGE].get(key) or key
