"""
AI-assisted CSV import for vendor inventory.

Flow: the model looks at the header and a few rows and says which CSV
column feeds which inventory field; the rows are then converted and
de-duplicated locally. The model never sees more than the sample, and if it
is unreachable or answers nonsense the header aliases below are used instead.

Configured with AI_BASE_URL / AI_API_KEY / AI_MODEL (defaults target a local
Ollama server).
"""

import csv
import io
import json
import logging
import os
import re
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from openai import OpenAI
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

AI_BASE_URL = os.getenv("AI_BASE_URL", "http://localhost:11434/v1")
AI_API_KEY = os.getenv("AI_API_KEY", "ollama")
AI_MODEL = os.getenv("AI_MODEL", "llama3.2:3b")
AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", "30"))
SAMPLE_ROWS = 5

TARGET_FIELDS = (
    "item_name", "category", "unit", "brand", "mrp", "price",
    "description", "barcode", "stock_quantity",
)
REQUIRED_FIELDS = ("item_name",)

# lower-cased header aliases, first match wins
HEADER_ALIASES = {
    "item_name": ("item_name", "itemname", "productname", "product name", "product", "name", "item", "title"),
    "category": ("subcategory", "sub category", "category", "type", "vendor_item_category"),
    "unit": ("unit", "quantity", "pack size", "size", "uom"),
    "brand": ("brand", "manufacturer", "make"),
    "mrp": ("mrp", "price", "list price", "max retail price"),
    "price": ("discountedprice", "discounted price", "selling price", "sale price", "offer price"),
    "description": ("description", "details", "desc"),
    "barcode": ("barcode", "upc", "ean", "sku"),
    "stock_quantity": ("stock", "stock quantity", "stock_quantity", "qty in stock", "inventory"),
}

DEFAULT_CATEGORY = "General"
DEFAULT_UNIT = "piece"


class ImportedItem(BaseModel):
    item_name: str = Field(..., min_length=1)
    vendor_item_category: str = DEFAULT_CATEGORY
    unit: str = DEFAULT_UNIT
    price: float = Field(..., ge=0)
    mrp: Optional[float] = Field(None, ge=0)
    stock_quantity: int = Field(0, ge=0)
    brand: Optional[str] = None
    description: Optional[str] = None
    barcode: Optional[str] = None


class CsvImportError(ValueError):
    pass


def parse_csv(text: str) -> Tuple[List[str], List[Dict[str, str]]]:
    reader = csv.DictReader(io.StringIO(text.lstrip("\ufeff")))
    headers = [h.strip() for h in (reader.fieldnames or []) if h and h.strip()]
    if not headers:
        raise CsvImportError("CSV file has no header row.")
    rows = []
    for raw in reader:
        row = {(k or "").strip(): (v or "").strip() for k, v in raw.items() if k is not None}
        if any(row.values()):
            rows.append(row)
    return headers, rows


def csv_sample(text: str, max_rows: int = SAMPLE_ROWS) -> str:
    lines = [line for line in text.lstrip("\ufeff").splitlines() if line.strip()]
    return "\n".join(lines[: max_rows + 1])


def get_ai_client() -> OpenAI:
    return OpenAI(base_url=AI_BASE_URL, api_key=AI_API_KEY, timeout=AI_TIMEOUT_SECONDS)


def _mapping_prompt(sample: str) -> str:
    fields = "\n".join(f"    - {f}" for f in TARGET_FIELDS)
    return f"""
    You are a data mapping assistant. Below is a sample of a CSV file (header row first).
    Decide which CSV column feeds each of these inventory fields:
{fields}

    Use 'SubCategory' for category if present, otherwise 'Category'. 'mrp' is the original
    (non-discounted) price, 'price' is the actual selling price.
    Return ONLY a raw JSON object whose keys are the fields above and whose values are the
    EXACT column names from the header. Omit fields you cannot map. No markdown.

    CSV sample:
    ---
    {sample}
    ---
    """


def _extract_json(content: str) -> dict:
    content = content.strip()
    # Cleanup potential markdown code blocks
    if "```" in content:
        content = content.split("```")[1]
        if content.startswith("json"):
            content = content[len("json"):]
    start, end = content.find("{"), content.rfind("}")
    if start == -1 or end == -1:
        raise ValueError("no JSON object in model output")
    data = json.loads(content[start:end + 1])
    if not isinstance(data, dict):
        raise ValueError("model output is not a JSON object")
    # some models wrap the answer as {"mappings": {...}}
    if isinstance(data.get("mappings"), dict):
        data = data["mappings"]
    return data


def heuristic_mappings(headers: Sequence[str]) -> Dict[str, str]:
    by_lower = {h.lower(): h for h in headers}
    mappings: Dict[str, str] = {}
    used: Set[str] = set()
    for field in TARGET_FIELDS:
        for alias in HEADER_ALIASES[field]:
            header = by_lower.get(alias)
            if header and header not in used:
                mappings[field] = header
                used.add(header)
                break
    return mappings


def _clean_mappings(raw: dict, headers: Sequence[str]) -> Dict[str, str]:
    header_set = set(headers)
    return {
        field: column for field, column in raw.items()
        if field in TARGET_FIELDS and isinstance(column, str) and column in header_set
    }


def determine_column_mappings(
    sample: str,
    headers: Sequence[str],
    client: Optional[OpenAI] = None,
) -> Tuple[Dict[str, str], str]:
    """Return (mappings, source) where source is 'ai' or 'heuristic'."""
    if not sample.strip():
        raise CsvImportError("CSV sample cannot be empty.")

    try:
        client = client or get_ai_client()
        response = client.chat.completions.create(
            model=AI_MODEL,
            messages=[
                {"role": "system", "content": "You map spreadsheet columns to a fixed schema and answer in JSON."},
                {"role": "user", "content": _mapping_prompt(sample)},
            ],
            max_tokens=300,
            temperature=0,
        )
        mappings = _clean_mappings(_extract_json(response.choices[0].message.content or ""), headers)
    except Exception as e:
        logger.warning(f"AI column mapping failed, using header heuristics: {e}")
        mappings = {}

    if all(f in mappings for f in REQUIRED_FIELDS):
        logger.info(f"AI column mapping: {mappings}")
        return mappings, "ai"

    fallback = heuristic_mappings(headers)
    # keep whatever the model did get right
    fallback.update(mappings)
    if not all(f in fallback for f in REQUIRED_FIELDS):
        raise CsvImportError("Could not determine which column holds the item name.")
    logger.info(f"Heuristic column mapping: {fallback}")
    return fallback, "heuristic"


_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")


def parse_number(value: Optional[str]) -> Optional[float]:
    """Lenient number parsing: '₹1,299.00' -> 1299.0, '' -> None."""
    if value is None:
        return None
    match = _NUMBER_RE.search(value.replace(",", ""))
    return float(match.group()) if match else None


def rows_to_items(rows: Iterable[Dict[str, str]], mappings: Dict[str, str]) -> List[ImportedItem]:
    def cell(row: Dict[str, str], field: str) -> Optional[str]:
        column = mappings.get(field)
        value = row.get(column, "").strip() if column else ""
        return value or None

    items = []
    for line_no, row in enumerate(rows, start=2):
        name = cell(row, "item_name")
        if not name:
            logger.debug(f"Skipping CSV line {line_no}: no item name")
            continue
        mrp = parse_number(cell(row, "mrp"))
        price = parse_number(cell(row, "price"))
        if price is None:
            price = mrp
        if price is None or price < 0:
            logger.debug(f"Skipping CSV line {line_no} ({name}): no usable price")
            continue
        if mrp is not None and mrp < 0:
            mrp = None
        if mrp is not None and price > mrp:
            price = mrp
        stock = parse_number(cell(row, "stock_quantity"))
        items.append(ImportedItem(
            item_name=name,
            vendor_item_category=cell(row, "category") or DEFAULT_CATEGORY,
            unit=cell(row, "unit") or DEFAULT_UNIT,
            price=price,
            mrp=mrp,
            stock_quantity=max(int(stock), 0) if stock is not None else 0,
            brand=cell(row, "brand"),
            description=cell(row, "description"),
            barcode=cell(row, "barcode"),
        ))
    return items


def item_key(name: str, category: str) -> str:
    return f"{name.lower().strip()}-{category.lower().strip()}"


def dedupe_items(candidates: Iterable[ImportedItem], existing_keys: Iterable[str] = ()) -> Tuple[List[ImportedItem], int]:
    """Drop candidates already in inventory or repeated earlier in the file."""
    seen = set(existing_keys)
    kept = []
    skipped = 0
    for item in candidates:
        key = item_key(item.item_name, item.vendor_item_category)
        if key in seen:
            skipped += 1
            continue
        seen.add(key)
        kept.append(item)
    return kept, skipped
