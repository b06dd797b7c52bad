"""
Internationalization for PeerChat.
Translates API errors and user notices based on the Accept-Language header.
"""

import json
import logging
import os
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)


SUPPORTED_LANGUAGES = ('en', 'es')
DEFAULT_LANGUAGE = 'en'


class I18nManager:
    """Manages translations for API errors and notices."""

    def __init__(self):
        self.translations: Dict[str, Dict[str, Any]] = {}
        self._load_translations()

    def _load_translations(self):
        """Load all translation files from the i18n directory."""
        i18n_dir = os.path.dirname(os.path.abspath(__file__))

        for lang in SUPPORTED_LANGUAGES:
            file_path = os.path.join(i18n_dir, f'{lang}.json')
            try:
                with open(file_path, 'r', encoding='utf-8') as f:
                    self.translations[lang] = json.load(f)
            except (OSError, ValueError) as e:
                logger.error(f"Error loading {lang}.json: {e}")

    def get_language_from_accept_language(self, accept_language: Optional[str]) -> str:
        """
        Pick the first supported language of an Accept-Language header
        ("es-ES,es;q=0.9,en;q=0.8" -> "es"). Quality values are not weighed;
        the header order is trusted.
        """
        if not accept_language:
            return DEFAULT_LANGUAGE

        for lang_range in accept_language.split(','):
            lang_only = lang_range.split(';')[0].strip().lower().split('-')[0]
            if lang_only in self.translations:
                return lang_only

        return DEFAULT_LANGUAGE

    def _lookup(self, key: str, language: str) -> Optional[str]:
        value: Any = self.translations.get(language, {})
        for part in key.split('.'):
            if not isinstance(value, dict) or part not in value:
                return None
            value = value[part]
        return value if isinstance(value, str) else None

    def translate(self, key: str, language: str = DEFAULT_LANGUAGE, **kwargs) -> str:
        """
        Get translated message by key.

        Falls back to English, then to the key itself. Placeholders
        ("{peer}", "{caller}") are filled from kwargs; a missing placeholder
        leaves the template unformatted.
        """
        if language not in self.translations:
            language = DEFAULT_LANGUAGE

        value = self._lookup(key, language)
        if value is None:
            value = self._lookup(key, DEFAULT_LANGUAGE)
        if value is None:
            logger.debug(f"Missing translation: {key}")
            return key

        if kwargs:
            try:
                return value.format(**kwargs)
            except KeyError:
                return value
        return value


# Global instance
_i18n_manager: Optional[I18nManager] = None


def get_i18n_manager() -> I18nManager:
    """Get or create the global I18nManager instance."""
    global _i18n_manager
    if _i18n_manager is None:
        _i18n_manager = I18nManager()
    return _i18n_manager


def translate(key: str, language: str = DEFAULT_LANGUAGE, **kwargs) -> str:
    """Convenience function to translate a message."""
    return get_i18n_manager().translate(key, language, **kwargs)


def translate_notice(code: str, language: str = DEFAULT_LANGUAGE, **kwargs) -> Dict[str, str]:
    """Title and description of a user-visible notice ("notices.{code}")"""
    return {
        "title": translate(f"notices.{code}.title", language, **kwargs),
        "description": translate(f"notices.{code}.description", language, **kwargs),
    }


def get_language_from_request(request) -> str:
    """
    Get language preference from FastAPI request.

    Supports:
    1. ?language=es query parameter
    2. Accept-Language header (HTTP standard)
    3. Defaults to 'en' if neither is provided
    """
    manager = get_i18n_manager()

    language = request.query_params.get('language')
    if language in manager.translations:
        return language

    return manager.get_language_from_accept_language(request.headers.get('accept-language'))
