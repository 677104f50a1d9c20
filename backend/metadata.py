import logging
from typing import Optional

import requests

from config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def fetch_google_book(query: str, settings: Settings = None) -> Optional[dict]:
    """Searches Google Books and returns the first result as BookCreate fields, or None."""
    settings = settings or default_settings
    params = {"q": query, "maxResults": 1}
    if settings.google_books_api_key:
        params["key"] = settings.google_books_api_key

    try:
        response = requests.get(settings.google_books_url, params=params, timeout=settings.google_books_timeout)
        response.raise_for_status()
        data = response.json()
    except (requests.RequestException, ValueError) as e:
        logger.warning("Google Books lookup for %r failed: %s", query, e)
        return None

    if not data.get("items"):
        return None

    # Get first result
    item = data["items"][0]
    info = item.get("volumeInfo", {})
    if not info.get("title"):
        return None

    list_price = item.get("saleInfo", {}).get("listPrice", {})
    return {
        "title": info.get("title"),
        "author": ", ".join(info.get("authors", ["Unknown"])),
        "category": info.get("categories", ["General"])[0],
        "summary": info.get("description"),
        "cover_image_url": info.get("imageLinks", {}).get("thumbnail"),
        "ebook_url": item.get("accessInfo", {}).get("pdf", {}).get("downloadLink"),
        "price": list_price.get("amount"),
    }
