from __future__ import annotations

import pytest

from Brochure_Insight.storage.references import AssetReferenceResolver


@pytest.mark.parametrize(
    "reference",
    [
        "C:\\Users\\me\\page_1.png",
        "D:/exports/page_1.png",
        "/tmp/pages/page_1.png",
        "local://job-1/abc/page_1.png",
        "file:///srv/page_1.png",
        "http://cdn.example.com/page_1.png",
        "",
        None,
    ],
)
def test_unresolvable_references_become_empty(reference) -> None:
    resolver = AssetReferenceResolver("https://cdn.example.com")

    assert resolver.resolve(reference) == ""


def test_https_urls_pass_through_unchanged() -> None:
    resolver = AssetReferenceResolver(None)

    assert resolver.resolve("https://other.example.com/a.png") == "https://other.example.com/a.png"


def test_cache_keys_are_joined_onto_public_base_url() -> None:
    resolver = AssetReferenceResolver("https://cdn.example.com/")

    assert resolver.resolve("pdf-cache/abc/images/page_1.png") == "https://cdn.example.com/pdf-cache/abc/images/page_1.png"


def test_cache_keys_without_base_url_are_not_leaked() -> None:
    assert AssetReferenceResolver(None).resolve("pdf-cache/abc/images/page_1.png") == ""


def test_payload_media_and_floor_plans_are_rewritten() -> None:
    resolver = AssetReferenceResolver("https://cdn.example.com")
    payload = {
        "media": ["pdf-cache/abc/images/page_1.png", "local://job/abc/page_2.png"],
        "units": [
            {"unit_type": "1BR", "floor_plan_image": "pdf-cache/abc/images/page_3.png"},
            {"unit_type": "2BR", "floor_plan_image": "C:\\plans\\2br.png"},
            {"unit_type": "3BR"},
        ],
        "warnings": ["kept"],
    }

    resolved = resolver.resolve_payload(payload)

    assert resolved["media"] == ["https://cdn.example.com/pdf-cache/abc/images/page_1.png"]
    assert resolved["units"][0]["floor_plan_image"] == "https://cdn.example.com/pdf-cache/abc/images/page_3.png"
    assert resolved["units"][1]["floor_plan_image"] is None
    assert "floor_plan_image" not in resolved["units"][2]
    assert resolved["warnings"] == ["kept"]
    assert payload["media"][1] == "local://job/abc/page_2.png"
