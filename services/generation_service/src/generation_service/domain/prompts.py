from __future__ import annotations

import json
from typing import Any

from generation_service.domain.models import SEARCH_DOCUMENTS, DocumentSearchResponse
from shared.schemas.documents import SearchMode

SEARCH_DOCUMENTS_TOOL: dict[str, Any] = {
    "type": "function",
    "function": {
        "name": SEARCH_DOCUMENTS,
        "description": (
            "Search through the user's uploaded documents for information relevant to the "
            "requested text. You can call this tool multiple times with different queries "
            "to gather comprehensive information."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Specific search query. Use keywords from the request.",
                },
                "search_mode": {
                    "type": "string",
                    "enum": [mode.value for mode in SearchMode],
                    "description": (
                        "vector (semantic), hybrid (semantic + keyword) or keyword "
                        "(text matching). Defaults to hybrid."
                    ),
                },
            },
            "required": ["query"],
        },
    },
}

TOOL_INSTRUCTIONS = """\
<document_search>
- Use the search_documents tool to look up facts in the user's documents before \
writing about them.
- You may search up to {max_searches} time(s). Prefer several focused queries over \
one broad query.
- Only state facts from the documents that the search results actually contain.
- Do NOT add reference markers such as [1] yourself; sources are attached afterwards.
</document_search>
"""

DEFAULT_USER_REQUEST = "Write the requested text based on the form inputs."

FORCE_FINAL_INSTRUCTION = (
    "No further document searches are possible. Write the final text now, using only "
    "the information gathered so far."
)

_NO_RESULTS = "No matching passages were found."
_RESULT_TEXT_LIMIT = 1_500


def render_form_inputs(form_inputs: dict[str, Any]) -> str:
    """Render form inputs as a tagged block, one ``key: value`` line each."""
    lines = []
    for key, value in form_inputs.items():
        if value is None or value == "":
            continue
        if not isinstance(value, str):
            value = json.dumps(value, ensure_ascii=False, default=str)
        lines.append(f"- {key}: {value}")
    body = "\n".join(lines) if lines else "- (none)"
    return f"<form_inputs>\n{body}\n</form_inputs>"


def build_system_prompt(
    system_prompt: str,
    form_inputs: dict[str, Any],
    *,
    tools_enabled: bool,
    max_searches: int,
) -> str:
    parts = [system_prompt.strip()]
    if tools_enabled:
        parts.append(TOOL_INSTRUCTIONS.format(max_searches=max_searches))
    parts.append(render_form_inputs(form_inputs))
    return "\n\n".join(parts)


def format_search_results(response: DocumentSearchResponse) -> str:
    """Tool result text returned to the model for one ``search_documents`` call."""
    if not response.results:
        return _NO_RESULTS

    blocks = []
    for rank, result in enumerate(response.results, start=1):
        text = result.chunk_text
        if len(text) > _RESULT_TEXT_LIMIT:
            text = text[:_RESULT_TEXT_LIMIT].rstrip() + " ..."
        blocks.append(
            f"Result {rank}: {result.title or 'Untitled'} (document {result.document_id}, "
            f"passage {result.chunk_index}, score {result.score:.2f})\n{text}"
        )
    return "\n\n---\n\n".join(blocks)


def format_search_failure(detail: str) -> str:
    return f"Search failed ({detail}). Continue with the information you already have."


def format_unknown_tool(name: str) -> str:
    return f"Unknown tool '{name}'. Only {SEARCH_DOCUMENTS} is available."
