"""Tests for asset URL normalization."""

import copy

import pytest

from url_normalizer import ResponseNormalizer, is_asset_key

ORIGIN = "https://crm.example.com"


@pytest.fixture
def normalize():
    return ResponseNormalizer(ORIGIN + "/")


def test_localhost_with_port(normalize):
    assert normalize({"avatar": "http://localhost:8000/storage/a.png"}) == {
        "avatar": f"{ORIGIN}/storage/a.png",
    }


def test_localhost_keeps_query_and_fragment(normalize):
    assert normalize.normalize_url("http://127.0.0.1/files/x.pdf?v=2#p3") == (
        f"{ORIGIN}/files/x.pdf?v=2#p3"
    )


def test_relative_asset_paths(normalize):
    assert normalize.normalize_url("storage/a.png") == f"{ORIGIN}/storage/a.png"
    assert normalize.normalize_url("/uploads/b.jpg") == f"{ORIGIN}/uploads/b.jpg"
    assert normalize.normalize_url("/Media/c.mp3") == f"{ORIGIN}/Media/c.mp3"


def test_same_host_http_upgraded(normalize):
    assert normalize.normalize_url("http://crm.example.com/storage/a.png") == (
        "https://crm.example.com/storage/a.png"
    )


def test_other_values_untouched(normalize):
    assert normalize.normalize_url("https://cdn.other.com/a.png") == "https://cdn.other.com/a.png"
    assert normalize.normalize_url("/api/orders") == "/api/orders"
    assert normalize.normalize_url("") == ""


def test_http_origin_does_not_upgrade():
    normalize = ResponseNormalizer("http://crm.example.com")
    assert normalize.normalize_url("http://crm.example.com/x") == "http://crm.example.com/x"
    assert normalize.normalize_url("http://localhost:8000/x") == "http://crm.example.com/x"


def test_nested_payload_and_scalars(normalize):
    payload = {
        "data": [
            {"id": 1, "thumbnail_url": "/storage/t1.png", "price": 9.5, "active": True},
            {"id": 2, "images": ["storage/a.png", "https://cdn.other.com/b.png"], "note": None},
        ],
        "meta": {"total": 2},
    }
    assert normalize(payload) == {
        "data": [
            {"id": 1, "thumbnail_url": f"{ORIGIN}/storage/t1.png", "price": 9.5, "active": True},
            {"id": 2, "images": [f"{ORIGIN}/storage/a.png", "https://cdn.other.com/b.png"],
             "note": None},
        ],
        "meta": {"total": 2},
    }


def test_input_not_mutated(normalize):
    payload = {"user": {"avatar": "/storage/a.png"}, "list": ["uploads/x"]}
    before = copy.deepcopy(payload)
    result = normalize(payload)
    assert payload == before
    assert result is not payload
    assert result["user"] is not payload["user"]


def test_cyclic_payload(normalize):
    node = {"image": "/storage/a.png"}
    node["self"] = node
    result = normalize(node)
    assert result["image"] == f"{ORIGIN}/storage/a.png"
    assert result["self"] is result


def test_shared_reference_maps_to_one_copy(normalize):
    shared = {"url": "/media/v.mp4"}
    result = normalize({"a": shared, "b": shared})
    assert result["a"] is result["b"]


def test_non_container_passthrough(normalize):
    assert normalize(42) == 42
    assert normalize(None) is None
    assert normalize("storage/a.png") == f"{ORIGIN}/storage/a.png"


@pytest.mark.parametrize("key, expected", [
    ("avatar", True),
    ("userAvatar", True),
    ("cover_image", True),
    ("Thumbnail", True),
    ("url", True),
    ("download_url", True),
    ("urls", False),
    ("name", False),
    (3, False),
])
def test_is_asset_key(key, expected):
    assert is_asset_key(key) is expected
