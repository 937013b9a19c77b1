"""
Translation

Translator interface used as the last step of every tutor reply. The default
AnnotatingTranslator marks supported languages instead of translating; a real
translation backend can be dropped in behind the same interface.
"""

from typing import Dict, Optional


class Translator:
    """Turns English tutor text into the session's language."""

    async def translate(self, text: str, language: str) -> str:
        raise NotImplementedError


class AnnotatingTranslator(Translator):
    """Wraps text for supported languages, passes everything else through."""

    DEFAULT_LANGUAGES = {
        "sn": "Shona",
        "nd": "Ndebele",
    }

    def __init__(self, languages: Optional[Dict[str, str]] = None):
        self.languages = dict(languages) if languages is not None else dict(self.DEFAULT_LANGUAGES)

    async def translate(self, text: str, language: str) -> str:
        if not language or language == "en":
            return text
        language_name = self.languages.get(language)
        if language_name is None:
            return text
        return f"[Translated to {language_name}]: {text}"
