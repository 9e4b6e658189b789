"""Преобразование ответов Keywords Everywhere API в читаемый текст."""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional

Formatter = Callable[[Any], Optional[str]]

DEFAULT_CURRENCY_SYMBOL = "RM"


def _dump(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False)


def _items(data: Any) -> Optional[List[Any]]:
    """Список записей: либо сам ответ, либо его поле `data`."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        return data["data"]
    return None


def _field(item: Any, key: str, default: Any = 0) -> Any:
    if isinstance(item, dict):
        return item.get(key) or default
    return default


def _cpc(item: Any) -> str:
    cpc = item.get("cpc") if isinstance(item, dict) else None
    if not isinstance(cpc, dict):
        return f"{DEFAULT_CURRENCY_SYMBOL}0.00"
    return f"{cpc.get('currency') or DEFAULT_CURRENCY_SYMBOL}{cpc.get('value') or '0.00'}"


def _format_credits(data: Any) -> str:
    balance = data[0] if isinstance(data, list) and data else data
    return f"Credit Balance: {balance}"


def _format_code_names(data: Any) -> Optional[str]:
    if isinstance(data, list):
        return "\n".join(f"{_field(item, 'code', '')}: {_field(item, 'name', '')}" for item in data)
    if isinstance(data, dict):
        return "\n".join(f"{code}: {name}" for code, name in data.items())
    return None


def _format_keyword_data(data: Any) -> Optional[str]:
    if not isinstance(data, dict) or not isinstance(data.get("data"), list):
        return None
    blocks = []
    for item in data["data"]:
        trend = item.get("trend") if isinstance(item, dict) else None
        blocks.append(
            f"{_field(item, 'keyword', '')}:\n"
            f"- Search Volume: {_field(item, 'vol')}\n"
            f"- CPC: {_cpc(item)}\n"
            f"- Competition: {_field(item, 'competition')}\n"
            f"- Trend: {json.dumps(trend) if trend else '[]'}"
        )
    return "\n\n".join(blocks)


def _format_keyword_list(data: Any) -> Optional[str]:
    items = _items(data)
    if items is None:
        return None
    return "\n\n".join(
        f"{index}. {_field(item, 'keyword', '')}\n"
        f"   - Search Volume: {_field(item, 'vol')}\n"
        f"   - CPC: {_cpc(item)}\n"
        f"   - Competition: {_field(item, 'competition')}"
        for index, item in enumerate(items, start=1)
    )


def _format_traffic(data: Any) -> Optional[str]:
    if not isinstance(data, dict):
        return None
    return (
        "Traffic Metrics:\n"
        f"- Total Keywords: {data.get('totalKeywords') or 0}\n"
        f"- Total Traffic: {data.get('totalTraffic') or 0}\n"
        f"- Traffic Cost: {DEFAULT_CURRENCY_SYMBOL}{data.get('trafficCost') or 0}"
    )


def _format_backlinks(data: Any) -> Optional[str]:
    items = _items(data)
    if items is None:
        return None
    return "\n\n".join(
        f"{index}. {_field(item, 'url', '')}\n"
        f"   - Domain Authority: {_field(item, 'da')}\n"
        f"   - Page Authority: {_field(item, 'pa')}\n"
        f"   - Spam Score: {_field(item, 'spamScore')}"
        for index, item in enumerate(items, start=1)
    )


FORMATTERS: Dict[str, Formatter] = {
    "get_credits": _format_credits,
    "get_countries": _format_code_names,
    "get_currencies": _format_code_names,
    "get_keyword_data": _format_keyword_data,
    "get_related_keywords": _format_keyword_list,
    "get_pasf_keywords": _format_keyword_list,
    "get_domain_keywords": _format_keyword_list,
    "get_url_keywords": _format_keyword_list,
    "get_domain_traffic": _format_traffic,
    "get_url_traffic": _format_traffic,
    "get_domain_backlinks": _format_backlinks,
    "get_unique_domain_backlinks": _format_backlinks,
    "get_page_backlinks": _format_backlinks,
    "get_unique_page_backlinks": _format_backlinks,
}


def format_response(tool_name: str, data: Any) -> str:
    """Текст для блока content; неожиданная форма ответа отдаётся как JSON."""
    formatter = FORMATTERS.get(tool_name)
    text = formatter(data) if formatter else None
    return text if text is not None else _dump(data)


__all__ = ["FORMATTERS", "format_response"]
