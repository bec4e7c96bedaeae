"""
Menu PDF import for restaurants and cafes.

The PDF text is pulled out locally with pdfplumber; the model then turns that
text into menu items (category, name, price string, description), which are
converted into the same preview rows the CSV import produces and stored
through bulk-add.
"""

import io
import logging
from typing import Any, Dict, List, Optional

import pdfplumber
from openai import OpenAI

from .csv_import import (
    AI_MODEL,
    DEFAULT_CATEGORY,
    DEFAULT_UNIT,
    ImportedItem,
    _extract_json,
    get_ai_client,
    parse_number,
)

logger = logging.getLogger(__name__)

# keeps the prompt inside a small local model's context window
MAX_MENU_CHARS = 12000


class MenuImportError(ValueError):
    """The upload is not a readable PDF menu."""


class MenuExtractionError(MenuImportError):
    """The model could not be reached or gave no usable answer."""


def extract_pdf_text(data: bytes) -> str:
    if not data.startswith(b"%PDF"):
        raise MenuImportError("Uploaded file is not a PDF.")
    try:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
    except Exception as e:
        raise MenuImportError(f"Could not read PDF: {e}") from e
    if not pages:
        raise MenuImportError("PDF has no pages.")
    text = "\n".join(pages)
    if not text.strip():
        raise MenuImportError("Could not extract any text from the PDF.")
    return text


def _menu_prompt(menu_text: str) -> str:
    return f"""
    You are an expert menu parsing AI. Below is the text of a restaurant menu.
    Extract every food and beverage item. For each item give:
    - "category": its menu section (e.g. Starters, Main Course, Beverages); infer one if the menu has none
    - "itemName": the name of the item
    - "price": the price as printed, including any currency symbol
    - "description": a short description, only if the menu has one

    Return ONLY a raw JSON object of the form {{"extractedItems": [...]}}. No markdown.

    Menu text:
    ---
    {menu_text[:MAX_MENU_CHARS]}
    ---
    """


def extract_menu_items(menu_text: str, client: Optional[OpenAI] = None) -> List[Dict[str, Any]]:
    """Ask the model for the menu items; returns the raw `extractedItems` entries."""
    try:
        client = client or get_ai_client()
        response = client.chat.completions.create(
            model=AI_MODEL,
            messages=[
                {"role": "system", "content": "You turn restaurant menus into structured JSON."},
                {"role": "user", "content": _menu_prompt(menu_text)},
            ],
            temperature=0,
        )
        data = _extract_json(response.choices[0].message.content or "")
    except Exception as e:
        logger.error(f"AI menu extraction failed: {e}")
        raise MenuExtractionError(f"AI menu extraction failed: {e}") from e

    items = data.get("extractedItems")
    if not isinstance(items, list):
        logger.warning(f"AI menu extraction returned no 'extractedItems': {data}")
        raise MenuExtractionError("AI menu extraction returned no structured items.")
    logger.info(f"AI extracted {len(items)} menu items")
    return [i for i in items if isinstance(i, dict)]


def menu_items_to_imported(raw_items: List[Dict[str, Any]]) -> List[ImportedItem]:
    items = []
    for raw in raw_items:
        name = str(raw.get("itemName") or raw.get("item_name") or "").strip()
        price = parse_number(str(raw.get("price") or ""))
        if not name or price is None or price < 0:
            logger.debug(f"Skipping menu entry without name or price: {raw}")
            continue
        description = str(raw.get("description") or "").strip()
        items.append(ImportedItem(
            item_name=name,
            vendor_item_category=str(raw.get("category") or "").strip() or DEFAULT_CATEGORY,
            unit=DEFAULT_UNIT,
            price=price,
            description=description or None,
        ))
    return items
