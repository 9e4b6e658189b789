"""Описание схем и реестра MCP-инструментов Keywords Everywhere."""

from __future__ import annotations

from typing import Any, Dict, List

from pydantic import BaseModel, Field

_COUNTRY = {
    "type": "string",
    "description": "Country code (empty string for Global, 'us' for United States, etc.)",
}
_NUM = {
    "type": "number",
    "description": "Number of results to return (max 1000)",
    "default": 10,
}
_DOMAIN = {"type": "string", "description": "Domain to analyze (e.g., example.com)"}
_URL = {"type": "string", "description": "URL to analyze"}


class ToolSchema(BaseModel):
    """JSON-схема аргументов инструмента MCP."""

    type: str = "object"
    properties: Dict[str, Any] = Field(default_factory=dict)
    required: List[str] = Field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return self.model_dump()


class ToolSpec(BaseModel):
    """Спецификация инструмента MCP, публикуемая в `tools/list`."""

    name: str
    title: str
    description: str
    input_schema: ToolSchema = Field(default_factory=ToolSchema)

    def as_mcp_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "inputSchema": self.input_schema.as_dict(),
        }

    def missing_arguments(self, arguments: Dict[str, Any]) -> List[str]:
        return [name for name in self.input_schema.required if arguments.get(name) is None]


def _spec(name: str, title: str, description: str, properties: Dict[str, Any] | None = None, required: List[str] | None = None) -> ToolSpec:
    return ToolSpec(
        name=name,
        title=title,
        description=description,
        input_schema=ToolSchema(properties=properties or {}, required=required or []),
    )


_SPECS = [
    _spec("get_credits", "Get Credits", "Get your account's credit balance"),
    _spec("get_countries", "Get Countries", "Get list of supported countries"),
    _spec("get_currencies", "Get Currencies", "Get list of supported currencies"),
    _spec(
        "get_keyword_data",
        "Get Keyword Data",
        "Get Volume, CPC and competition for a set of keywords",
        {
            "keywords": {
                "type": "array",
                "items": {"type": "string"},
                "description": "List of keywords to analyze",
            },
            "country": _COUNTRY,
            "currency": {
                "type": "string",
                "description": "Currency code (e.g., 'myr' for Malaysian Ringgit)",
                "default": "myr",
            },
        },
        ["keywords"],
    ),
    _spec(
        "get_related_keywords",
        "Get Related Keywords",
        "Get related keywords based on a seed keyword",
        {
            "keyword": {"type": "string", "description": "Seed keyword to find related terms for"},
            "num": _NUM,
        },
        ["keyword"],
    ),
    _spec(
        "get_pasf_keywords",
        "Get PASF Keywords",
        "Get 'People Also Search For' keywords based on a seed keyword",
        {
            "keyword": {"type": "string", "description": "Seed keyword to find PASF terms for"},
            "num": _NUM,
        },
        ["keyword"],
    ),
    _spec(
        "get_domain_keywords",
        "Get Domain Keywords",
        "Get keywords that a domain ranks for",
        {"domain": _DOMAIN, "country": _COUNTRY, "num": _NUM},
        ["domain"],
    ),
    _spec(
        "get_url_keywords",
        "Get URL Keywords",
        "Get keywords that a URL ranks for",
        {"url": _URL, "country": _COUNTRY, "num": _NUM},
        ["url"],
    ),
    _spec(
        "get_domain_traffic",
        "Get Domain Traffic",
        "Get traffic metrics for a domain",
        {"domain": _DOMAIN, "country": _COUNTRY},
        ["domain"],
    ),
    _spec(
        "get_url_traffic",
        "Get URL Traffic",
        "Get traffic metrics for a URL",
        {"url": _URL, "country": _COUNTRY},
        ["url"],
    ),
    _spec(
        "get_domain_backlinks",
        "Get Domain Backlinks",
        "Get backlinks for a domain",
        {"domain": _DOMAIN, "num": _NUM},
        ["domain"],
    ),
    _spec(
        "get_unique_domain_backlinks",
        "Get Unique Domain Backlinks",
        "Get unique domain backlinks",
        {"domain": _DOMAIN, "num": _NUM},
        ["domain"],
    ),
    _spec(
        "get_page_backlinks",
        "Get Page Backlinks",
        "Get backlinks for a specific URL",
        {"url": _URL, "num": _NUM},
        ["url"],
    ),
    _spec(
        "get_unique_page_backlinks",
        "Get Unique Page Backlinks",
        "Get unique backlinks for a specific URL",
        {"url": _URL, "num": _NUM},
        ["url"],
    ),
]

# Порядок вставки = порядок в tools/list.
TOOLS: Dict[str, ToolSpec] = {spec.name: spec for spec in _SPECS}

__all__ = [
    "ToolSchema",
    "ToolSpec",
    "TOOLS",
]
