"""Canonical product fields and marketplace field requirements.

Marketplaces name the same attribute in many ways ("Brand", "Manufacturer",
"brand_name").  Every tracked field is keyed by its canonical name, found
with ``canonical_field_name``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .enums import FieldDataType

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_field_name(name: str) -> str:
    """Lower-case *name* and replace every non-alphanumeric character with ``_``."""
    return _NON_ALNUM.sub("_", name.lower())


@dataclass(frozen=True)
class CanonicalField:
    name: str
    display_name: str
    data_type: FieldDataType = FieldDataType.STRING
    aliases: tuple[str, ...] = ()


@dataclass(frozen=True)
class FieldRequirement:
    """A field some marketplace asks for."""

    name: str
    display_name: str | None = None
    data_type: FieldDataType | None = None
    allowed_values: tuple[str, ...] | None = None


CANONICAL_FIELDS: dict[str, CanonicalField] = {
    f.name: f
    for f in (
        CanonicalField("title", "Title", aliases=("name", "product name", "item title")),
        CanonicalField("description", "Description", aliases=("item description",)),
        CanonicalField("brand", "Brand", aliases=("manufacturer", "brand name", "make")),
        CanonicalField("model", "Model", aliases=("model number", "model name")),
        CanonicalField("mpn", "Manufacturer Part Number", aliases=("part number",)),
        CanonicalField("upc", "UPC", aliases=("barcode", "ean", "gtin", "upc code")),
        CanonicalField("category", "Category", aliases=("category path",)),
        CanonicalField("condition", "Condition", FieldDataType.ENUM, ("item condition",)),
        CanonicalField("color", "Color", aliases=("colour", "main color")),
        CanonicalField("material", "Material", aliases=("fabric", "main material")),
        CanonicalField("size", "Size", aliases=("item size",)),
        CanonicalField("style", "Style"),
        CanonicalField("pattern", "Pattern"),
        CanonicalField("weight", "Weight", aliases=("item weight",)),
        CanonicalField("dimensions", "Dimensions", aliases=("item dimensions",)),
        CanonicalField("capacity", "Capacity", aliases=("storage capacity", "volume")),
        CanonicalField(
            "country_of_manufacture",
            "Country of Manufacture",
            aliases=("country/region of manufacture", "made in"),
        ),
        CanonicalField(
            "year_manufactured", "Year Manufactured", FieldDataType.NUMBER, ("year",)
        ),
        CanonicalField("price", "Price", FieldDataType.NUMBER, ("list price",)),
        CanonicalField("price_reference", "Price Reference", FieldDataType.OBJECT),
        CanonicalField("demand_indicator", "Demand Indicator", FieldDataType.OBJECT),
    )
}

_ALIAS_INDEX: dict[str, str] = {
    normalize_field_name(alias): f.name
    for f in CANONICAL_FIELDS.values()
    for alias in f.aliases
}


def canonical_field_name(name: str) -> str:
    """Map a marketplace field name to its canonical name.

    Unknown names are returned normalized so they can be tracked as
    new fields.
    """
    normalized = normalize_field_name(name)
    if normalized in CANONICAL_FIELDS:
        return normalized
    return _ALIAS_INDEX.get(normalized, normalized)
