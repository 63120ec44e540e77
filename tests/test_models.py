import pytest

from coloringbook.errors import ValidationError
from coloringbook.jobs.models import (
    PromptRemixJob,
    Provider,
    coerce_provider,
    parse_photobook_payload,
    parse_remix_request,
)
from coloringbook.jobs.prompts import VARIANT_THEMES, prompts_from_themes


def test_unknown_provider_means_default():
    assert coerce_provider("gemini") == Provider.GEMINI
    assert coerce_provider("dall-e") is None


def test_stored_job_with_unknown_provider_and_null_results_loads():
    job = PromptRemixJob.model_validate(
        {
            "id": "job-1",
            "status": "queued",
            "image_url": "https://cdn.test/a.png",
            "prompts": ["beach"],
            "results": None,
            "provider": "midjourney",
            "created_at": "2025-01-01T00:00:00+00:00",
        }
    )

    assert job.provider is None
    assert job.results == []


def test_remix_request_requires_http_image_url():
    with pytest.raises(ValidationError) as excinfo:
        parse_remix_request(image_url="ftp://cdn.test/a.png", prompts=["beach"])

    assert excinfo.value.reasons[0].startswith("image_url")


def test_photobook_payload_requires_a_dict():
    with pytest.raises(ValidationError) as excinfo:
        parse_photobook_payload(None)

    assert str(excinfo.value) == "Photobook job payload is invalid or missing"


def test_photobook_payload_rejects_non_http_image_url():
    with pytest.raises(ValidationError):
        parse_photobook_payload(
            {
                "images": [{"id": "a", "name": "A", "coloring_page_url": "file:///etc/passwd"}],
                "title": "T",
                "userId": "u",
            }
        )


def test_photobook_payload_round_trips_through_stored_json():
    payload = parse_photobook_payload(
        {
            "images": [{"id": "a", "name": "A", "imageUrl": "https://cdn.test/a.png"}],
            "title": " Summer ",
            "user_id": "u",
        }
    )

    again = parse_photobook_payload(payload.to_json())

    assert again.title == "Summer"
    assert again.user_id == "u"
    assert again.images[0].coloring_page_url == "https://cdn.test/a.png"


def test_theme_ids_map_to_prompts_in_request_order():
    assert prompts_from_themes(["space", "nope", "beach"]) == [
        "exploring outer space with rockets, planets, stars, and floating among the cosmos",
        "enjoying a sunny beach with palm trees, sand castles, beach balls, and gentle waves",
    ]
    assert len({theme.id for theme in VARIANT_THEMES}) == len(VARIANT_THEMES)
