import requests

import metadata
from config import Settings


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


VOLUME = {
    "items": [{
        "volumeInfo": {
            "title": "Matilda",
            "authors": ["Roald Dahl"],
            "categories": ["Juvenile Fiction"],
            "description": "A girl who loves books.",
            "imageLinks": {"thumbnail": "http://books.example/matilda.jpg"},
        },
        "saleInfo": {"listPrice": {"amount": 299.0, "currencyCode": "INR"}},
        "accessInfo": {"pdf": {"downloadLink": "http://books.example/matilda.pdf"}},
    }]
}


def test_maps_first_result_to_book_fields(monkeypatch):
    calls = []

    def fake_get(url, params=None, timeout=None):
        calls.append((url, params, timeout))
        return FakeResponse(VOLUME)

    monkeypatch.setattr(metadata.requests, "get", fake_get)
    settings = Settings(google_books_timeout=2.5, google_books_api_key="k")

    book = metadata.fetch_google_book("intitle:Matilda", settings)

    assert book == {
        "title": "Matilda",
        "author": "Roald Dahl",
        "category": "Juvenile Fiction",
        "summary": "A girl who loves books.",
        "cover_image_url": "http://books.example/matilda.jpg",
        "ebook_url": "http://books.example/matilda.pdf",
        "price": 299.0,
    }
    url, params, timeout = calls[0]
    assert params["q"] == "intitle:Matilda"
    assert params["key"] == "k"
    assert timeout == 2.5


def test_sparse_volume_uses_defaults(monkeypatch):
    payload = {"items": [{"volumeInfo": {"title": "Untitled Notes"}}]}
    monkeypatch.setattr(metadata.requests, "get", lambda *a, **kw: FakeResponse(payload))

    book = metadata.fetch_google_book("notes")

    assert book["author"] == "Unknown"
    assert book["category"] == "General"
    assert book["cover_image_url"] is None
    assert book["price"] is None


def test_no_items_returns_none(monkeypatch):
    monkeypatch.setattr(metadata.requests, "get", lambda *a, **kw: FakeResponse({"totalItems": 0}))
    assert metadata.fetch_google_book("nothing") is None


def test_network_failure_returns_none(monkeypatch):
    def boom(*args, **kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(metadata.requests, "get", boom)
    assert metadata.fetch_google_book("anything") is None


def test_http_error_returns_none(monkeypatch):
    monkeypatch.setattr(metadata.requests, "get", lambda *a, **kw: FakeResponse({}, status_code=503))
    assert metadata.fetch_google_book("anything") is None
