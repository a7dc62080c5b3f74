"""
语言中间件：解析请求语言，供错误消息与提示文案翻译使用
"""
from __future__ import annotations

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from core.i18n import set_locale


DEFAULT_LOCALE = "en"


def _pick_from_accept_language(header: str) -> str:
    """Best tag from an Accept-Language header by q weight.

    'zh-CN,zh;q=0.9,en;q=0.7' -> 'zh-CN'
    """
    candidates = []
    for index, part in enumerate(header.split(",")):
        lang, _, params = part.strip().partition(";")
        lang = lang.strip()
        if not lang or lang == "*":
            continue
        q = 1.0
        params = params.strip()
        if params.startswith("q="):
            try:
                q = float(params[2:])
            except ValueError:
                q = 0.0
        candidates.append((-q, index, lang))
    if not candidates:
        return DEFAULT_LOCALE
    return min(candidates)[2]


def _normalize(lang: str) -> str:
    """Map common browser tags to catalog names."""
    tag = (lang or DEFAULT_LOCALE).replace("_", "-").lower()
    if tag in {"zh-cn", "zh-hans", "zh"}:
        return "zh_Hans"
    if tag.startswith("id"):
        return "id"
    if tag in {"en", "en-us", "en-gb"}:
        return "en"
    return lang


class LocaleMiddleware(BaseHTTPMiddleware):
    """Priority: ?lang=xx > X-Lang > Accept-Language > 'en'."""

    async def dispatch(self, request: Request, call_next):
        lang = request.query_params.get("lang") or request.headers.get("X-Lang")
        if not lang:
            accept = request.headers.get("Accept-Language", "")
            lang = _pick_from_accept_language(accept) if accept else DEFAULT_LOCALE
        set_locale(_normalize(lang))
        request.state.locale = lang
        return await call_next(request)
