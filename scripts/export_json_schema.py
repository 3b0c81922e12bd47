#!/usr/bin/env python3
"""
Export JSON Schema files from Pydantic models for Contact Finder.
- Draft: 2020-12
- Sources: contactfinder/schemas.py (SearchRequest, PipelineResult, SearchResponse)
- Outputs: schemas/*.schema.json
"""
import json
import sys
from pathlib import Path
from typing import Any, Dict, Optional

# Ensure project root execution
ROOT = Path(__file__).resolve().parents[1]
SCHEMAS_DIR = ROOT / "schemas"
sys.path.insert(0, str(ROOT))

from contactfinder.schemas import PipelineResult, SearchRequest, SearchResponse  # noqa: E402

SCHEMA_VERSION = "https://json-schema.org/draft/2020-12/schema"


def add_common_headers(schema: Dict[str, Any], title: str, description: str, example: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    schema.setdefault("$schema", SCHEMA_VERSION)
    schema.setdefault("title", title)
    schema.setdefault("description", description)
    if example is not None:
        schema.setdefault("examples", [example])
    return schema


def request_example() -> dict:
    return {"query": "музыкальная студия тюмень", "top": 10, "pages": 3}


def result_example() -> dict:
    return {
        "link": {
            "url": "https://example-studio.ru/",
            "title": "Музыкальная студия",
            "snippet": "",
            "relevant": True,
            "reason": "official studio website",
        },
        "page": "https://example-studio.ru/",
        "contacts": {
            "emails": ["info@example-studio.ru"],
            "phones": ["+79991234567"],
            "socials": [{"platform": "vk", "url": "https://vk.com/example_studio"}],
            "contactPageHints": [],
        },
        "logs": ["[2025-11-05T10:00:00.000Z] [https://example-studio.ru/] Loading page..."],
    }


def response_example() -> dict:
    return {
        "query": "музыкальная студия тюмень",
        "total": 1,
        "results": [result_example()],
        "logs": ['[2025-11-05T10:00:00.000Z] Start: "музыкальная студия тюмень" (top=10, pages=3)'],
        "historyId": 1,
    }


def save_schema(model, path: Path, title: str, description: str, example: dict):
    schema = model.model_json_schema(by_alias=True)
    schema = add_common_headers(schema, title, description, example)
    path.write_text(json.dumps(schema, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    print(f"Wrote {path.relative_to(ROOT)}")


def main():
    SCHEMAS_DIR.mkdir(parents=True, exist_ok=True)
    save_schema(
        SearchRequest,
        SCHEMAS_DIR / "search_request.schema.json",
        "SearchRequest",
        "Input of one discovery run.",
        request_example(),
    )
    save_schema(
        PipelineResult,
        SCHEMAS_DIR / "pipeline_result.schema.json",
        "PipelineResult",
        "Outcome of processing one ranked link.",
        result_example(),
    )
    save_schema(
        SearchResponse,
        SCHEMAS_DIR / "search_response.schema.json",
        "SearchResponse",
        "Results and narrative logs of one discovery run.",
        response_example(),
    )


if __name__ == "__main__":
    main()
