import pytest
from pydantic import ValidationError

from marketplace.models.schemas import CollectionCreateRequest, NFTCreateRequest
from marketplace.services.sanitizer import sanitize_html, sanitize_text

COLLECTION_ID = "3f1c2a9e-8b7d-4c6e-9a5b-1d2e3f4a5b6c"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("<script>alert(1)</script>", "alert(1)"),
        ("<b>Sunset</b> #1", "Sunset #1"),
        ("javascript:alert(1)", "alert(1)"),
        ("Click onclick=steal()", "Click steal()"),
        ("  plain  ", "plain"),
        ("", ""),
    ],
)
def test_sanitize_text(raw, expected):
    assert sanitize_text(raw) == expected


def test_sanitize_html_keeps_basic_formatting():
    assert sanitize_html("<p>A <strong>rare</strong> piece</p>") == "<p>A <strong>rare</strong> piece</p>"


def test_sanitize_html_drops_tags_and_attributes():
    assert sanitize_html("<img src=x onerror=alert(1)>") == ""
    assert sanitize_html('<p onclick="x()">hi</p><iframe src="evil"></iframe>') == "<p>hi</p>"


def test_nft_request_cleans_name_and_description():
    body = NFTCreateRequest(
        name="<script>alert(1)</script>",
        description="<img src=x onerror=alert(1)>",
        collection_id=COLLECTION_ID,
    )
    assert body.name == "alert(1)"
    assert body.description is None


def test_nft_request_name_empty_after_cleaning():
    with pytest.raises(ValidationError):
        NFTCreateRequest(name="<b></b>", collection_id=COLLECTION_ID)


@pytest.mark.parametrize("url", ["javascript:alert(1)", "not a url", "ftp://example.com/a.png"])
def test_nft_request_rejects_bad_image_url(url):
    with pytest.raises(ValidationError):
        NFTCreateRequest(name="x", image_url=url, collection_id=COLLECTION_ID)


def test_blank_url_is_none():
    body = NFTCreateRequest(name="x", image_url="", collection_id=COLLECTION_ID)
    assert body.image_url is None


def test_collection_request_validates_banner_url():
    with pytest.raises(ValidationError):
        CollectionCreateRequest(name="Skies", banner_url="javascript:alert(1)")

    body = CollectionCreateRequest(
        name="<i>Skies</i>",
        image_url="https://cdn.example.com/skies.png",
        banner_url="",
    )
    assert body.name == "Skies"
    assert str(body.image_url) == "https://cdn.example.com/skies.png"
    assert body.banner_url is None
