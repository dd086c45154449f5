"""
Google Cloud Translation (v2) for English and Austrian-German PDF quotes.

Quotes are written in Slovak. Without GOOGLE_API_KEY, or on any API
error, the original text is returned so a PDF is always produced.
"""

import logging
import threading

import requests

from portal.core.config import get_key

log = logging.getLogger("portal.translate")

API_URL = "https://translation.googleapis.com/language/translate/v2"
TIMEOUT = 15

_LANG_MAP = {"de-AT": "de", "sk": "sk", "en": "en"}

_cache = {}
_cache_lock = threading.Lock()


def _target(lang: str) -> str:
    return _LANG_MAP.get(lang, lang)


def _cache_key(text, source, target):
    return f"{text}:{source}:{target}"


def clear_cache():
    with _cache_lock:
        _cache.clear()


def _request(texts, source, target):
    """Translated strings for ``texts`` (a list), or None on any failure."""
    api_key = get_key("google_api_key")
    if not api_key:
        log.warning("GOOGLE_API_KEY not configured, returning original text")
        return None
    try:
        resp = requests.post(
            API_URL, params={"key": api_key},
            json={"q": texts if len(texts) > 1 else texts[0],
                  "source": source, "target": target, "format": "text"},
            timeout=TIMEOUT,
        )
        resp.raise_for_status()
        body = resp.json()
    except (requests.RequestException, ValueError) as e:
        log.error("Translation API error: %s", e)
        return None
    data = body.get("data") if isinstance(body, dict) else None
    translations = data.get("translations") if isinstance(data, dict) else None
    if not isinstance(translations, list) or len(translations) != len(texts):
        log.error("Unexpected translation API response: %.200r", body)
        return None
    return [(t.get("translatedText") if isinstance(t, dict) else None) or texts[i]
            for i, t in enumerate(translations)]


def translate_text(text: str, target_lang: str, source_lang: str = "sk") -> str:
    if not text or target_lang == source_lang or target_lang == "sk":
        return text
    target = _target(target_lang)
    key = _cache_key(text, source_lang, target)
    with _cache_lock:
        if key in _cache:
            return _cache[key]
    translated = _request([text], source_lang, target)
    if not translated:
        return text
    with _cache_lock:
        _cache[key] = translated[0]
    return translated[0]


def translate_batch(texts: list, target_lang: str, source_lang: str = "sk") -> list:
    """Translate many texts in one call; cached texts are not sent again."""
    if target_lang == source_lang or target_lang == "sk":
        return list(texts)
    target = _target(target_lang)
    results = list(texts)
    pending = []
    with _cache_lock:
        for idx, text in enumerate(texts):
            if not text:
                continue
            key = _cache_key(text, source_lang, target)
            if key in _cache:
                results[idx] = _cache[key]
            else:
                pending.append(idx)
    if not pending:
        return results

    translated = _request([texts[i] for i in pending], source_lang, target)
    if translated is None:
        return results
    with _cache_lock:
        for idx, value in zip(pending, translated):
            _cache[_cache_key(texts[idx], source_lang, target)] = value
            results[idx] = value
    return results
