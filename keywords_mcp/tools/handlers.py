"""Обработчики MCP-инструментов: аргументы инструмента -> запрос к Keywords Everywhere API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from keywords_mcp.services.keywords_everywhere import FormData, KeywordsEverywhereClient
from keywords_mcp.tools.registry import TOOLS

logger = logging.getLogger("keywords_mcp.tools.handlers")

ToolResponse = Dict[str, Any]
PayloadBuilder = Callable[[Dict[str, Any]], Dict[str, Any]]

DEFAULT_NUM = 10
DEFAULT_CURRENCY = "myr"


def _tool_ok(text: str) -> ToolResponse:
    return {
        "content": [{"type": "text", "text": text}],
        "isError": False,
    }


def _tool_error(message: str) -> ToolResponse:
    return {
        "content": [{"type": "text", "text": f"Error: {message}"}],
        "isError": True,
    }


@dataclass(frozen=True)
class ToolHandler:
    """Привязка инструмента к одному эндпоинту API и форме тела запроса.

    body: None -> GET без тела, "json" -> POST JSON, "form" -> POST x-www-form-urlencoded.
    """

    endpoint: str
    body: Optional[str] = None
    build_payload: Optional[PayloadBuilder] = None

    async def __call__(
        self,
        client: KeywordsEverywhereClient,
        arguments: Dict[str, Any],
        credential: Optional[str],
    ) -> Any:
        payload = self.build_payload(arguments) if self.build_payload else None
        logger.debug("Upstream payload for %s: %s", self.endpoint, payload)
        if self.body == "form":
            return await client.call(self.endpoint, credential=credential, form=payload)
        if self.body == "json":
            return await client.call(self.endpoint, credential=credential, json_body=payload)
        return await client.call(self.endpoint, credential=credential)


def _num(arguments: Dict[str, Any]) -> Any:
    return arguments.get("num") or DEFAULT_NUM


def _keyword_data_form(arguments: Dict[str, Any]) -> FormData:
    keywords = arguments.get("keywords")
    if isinstance(keywords, str):
        keywords = [keywords]
    kw: List[str] = [str(item) for item in keywords] if isinstance(keywords, list) else []
    return {
        "kw[]": kw,
        "country": arguments.get("country") or "",
        "currency": arguments.get("currency") or DEFAULT_CURRENCY,
        # Google Keyword Planner + clickstream
        "dataSource": "cli",
    }


def _seed_keyword(arguments: Dict[str, Any]) -> Dict[str, Any]:
    return {"keyword": arguments.get("keyword"), "num": _num(arguments)}


def _target_with_country(target: str, *, with_num: bool) -> PayloadBuilder:
    def build(arguments: Dict[str, Any]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {target: arguments.get(target), "country": arguments.get("country") or ""}
        if with_num:
            payload["num"] = _num(arguments)
        return payload

    return build


def _target_with_num(target: str) -> PayloadBuilder:
    def build(arguments: Dict[str, Any]) -> Dict[str, Any]:
        return {target: arguments.get(target), "num": _num(arguments)}

    return build


TOOL_HANDLERS: Dict[str, ToolHandler] = {
    "get_credits": ToolHandler("account/credits"),
    "get_countries": ToolHandler("countries"),
    "get_currencies": ToolHandler("currencies"),
    "get_keyword_data": ToolHandler("get_keyword_data", "form", _keyword_data_form),
    "get_related_keywords": ToolHandler("get_related_keywords", "json", _seed_keyword),
    "get_pasf_keywords": ToolHandler("get_pasf_keywords", "json", _seed_keyword),
    "get_domain_keywords": ToolHandler("get_domain_keywords", "json", _target_with_country("domain", with_num=True)),
    "get_url_keywords": ToolHandler("get_url_keywords", "json", _target_with_country("url", with_num=True)),
    "get_domain_traffic": ToolHandler("get_domain_traffic", "json", _target_with_country("domain", with_num=False)),
    "get_url_traffic": ToolHandler("get_url_traffic", "json", _target_with_country("url", with_num=False)),
    "get_domain_backlinks": ToolHandler("get_domain_backlinks", "json", _target_with_num("domain")),
    "get_unique_domain_backlinks": ToolHandler("get_unique_domain_backlinks", "json", _target_with_num("domain")),
    "get_page_backlinks": ToolHandler("get_page_backlinks", "json", _target_with_num("url")),
    "get_unique_page_backlinks": ToolHandler("get_unique_page_backlinks", "json", _target_with_num("url")),
}

if set(TOOL_HANDLERS) != set(TOOLS):  # pragma: no cover - import-time guard
    raise RuntimeError("Tool registry and handler table are out of sync")

__all__ = [
    "TOOL_HANDLERS",
    "ToolHandler",
    "ToolResponse",
    "_tool_error",
    "_tool_ok",
]
