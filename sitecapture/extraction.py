"""Computed-style font and color extraction from the rendered DOM."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional

from playwright.async_api import Page

from sitecapture import metrics

LOGGER = logging.getLogger(__name__)

GENERIC_FONT_KEYWORDS = frozenset(
    {
        "serif",
        "sans-serif",
        "monospace",
        "cursive",
        "fantasy",
        "system-ui",
        "inherit",
        "initial",
        "unset",
    }
)
NON_COLOR_VALUES = frozenset(
    {
        "",
        "transparent",
        "rgba(0, 0, 0, 0)",
        "rgba(0,0,0,0)",
        "inherit",
        "initial",
        "unset",
        "currentcolor",
        "none",
    }
)
COLOR_PROPERTIES: tuple[str, ...] = (
    "color",
    "backgroundColor",
    "borderTopColor",
    "borderRightColor",
    "borderBottomColor",
    "borderLeftColor",
    "outlineColor",
)
TEXT_SELECTORS = "h1, h2, h3, h4, h5, h6, p, span, div, a, button, input, textarea, label, li, td, th"
HEADING_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")
COLOR_DETAIL_TAGS = HEADING_TAGS + ("button", "a", "p")

# Records are deduplicated in-page so large DOMs do not ship every element back.
_FONT_SCRIPT = """
({selectors, headingTags, sampleLength, recordLimit}) => {
    const families = [];
    const seenFamilies = new Set();
    const headings = [];
    const others = [];
    const seenOther = new Set();
    for (const el of document.querySelectorAll(selectors)) {
        const text = (el.textContent || '').trim();
        if (!text) continue;
        const style = window.getComputedStyle(el);
        const family = style.fontFamily;
        if (!family) continue;
        if (!seenFamilies.has(family)) {
            seenFamilies.add(family);
            families.push(family);
        }
        const tag = el.tagName.toLowerCase();
        const record = {
            family,
            size: style.fontSize,
            weight: style.fontWeight,
            style: style.fontStyle,
            element: tag,
            sampleText: text.substring(0, sampleLength),
        };
        if (headingTags.includes(tag)) {
            if (headings.length < recordLimit) headings.push(record);
        } else if (!seenOther.has(family) && others.length < recordLimit) {
            seenOther.add(family);
            others.push(record);
        }
    }
    return {families, headings, others};
}
"""

_COLOR_SCRIPT = """
({properties, detailTags, sampleLength}) => {
    const values = [];
    const seen = new Set();
    const details = [];
    const detailSeen = new Set();
    for (const el of document.querySelectorAll('*')) {
        const style = window.getComputedStyle(el);
        const tag = el.tagName.toLowerCase();
        for (const prop of properties) {
            const value = style[prop];
            if (!value) continue;
            if (!seen.has(value)) {
                seen.add(value);
                values.push(value);
            }
            if (detailTags.includes(tag) && !detailSeen.has(value)) {
                detailSeen.add(value);
                details.push({
                    color: value,
                    element: tag,
                    property: prop,
                    sampleText: (el.textContent || '').trim().substring(0, sampleLength),
                });
            }
        }
    }
    return {values, details};
}
"""


@dataclass(slots=True)
class FontUsage:
    family: str
    size: str
    weight: str
    style: str
    element: str
    sample_text: str

    def to_payload(self) -> dict[str, str]:
        return {
            "fontFamily": self.family,
            "fontSize": self.size,
            "fontWeight": self.weight,
            "fontStyle": self.style,
            "element": self.element,
            "sampleText": self.sample_text,
        }


@dataclass(slots=True)
class FontProfile:
    unique: List[str] = field(default_factory=list)
    detailed: List[FontUsage] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "unique": list(self.unique),
            "detailed": [usage.to_payload() for usage in self.detailed],
            "totalCount": len(self.unique),
        }


@dataclass(slots=True)
class ColorUsage:
    color: str
    element: str
    property: str
    sample_text: str

    def to_payload(self) -> dict[str, str]:
        return {
            "color": self.color,
            "element": self.element,
            "property": self.property,
            "sampleText": self.sample_text,
        }


@dataclass(slots=True)
class ColorProfile:
    unique: List[str] = field(default_factory=list)
    dominant: List[str] = field(default_factory=list)
    detailed: List[ColorUsage] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "unique": list(self.unique),
            "dominantColors": list(self.dominant),
            "detailed": [usage.to_payload() for usage in self.detailed],
            "totalCount": len(self.unique),
        }


def primary_font_family(raw: str | None) -> str | None:
    """First family of a computed ``font-family`` list, unquoted; None for generics."""

    if not raw:
        return None
    first = raw.split(",")[0].strip().replace('"', "").replace("'", "").strip()
    if not first or first.lower() in GENERIC_FONT_KEYWORDS:
        return None
    return first


def is_meaningful_color(value: str | None) -> bool:
    if not value:
        return False
    normalized = value.strip().lower()
    if normalized in NON_COLOR_VALUES:
        return False
    if "var(" in normalized:
        return False
    compact = normalized.replace(" ", "")
    return compact not in {"rgba(0,0,0,0)", "rgba(0,0,0,0.0)"}


def build_font_profile(raw: Mapping[str, Any], *, detail_limit: int = 20) -> FontProfile:
    """Normalize the in-page font payload; heading usages lead the detailed list."""

    unique: list[str] = []
    for family in raw.get("families") or []:
        name = primary_font_family(family)
        if name and name not in unique:
            unique.append(name)

    detailed: list[FontUsage] = []
    for record in _iter_records(raw.get("headings"), raw.get("others")):
        if len(detailed) >= detail_limit:
            break
        name = primary_font_family(record.get("family"))
        if not name:
            continue
        detailed.append(
            FontUsage(
                family=name,
                size=str(record.get("size") or ""),
                weight=str(record.get("weight") or ""),
                style=str(record.get("style") or ""),
                element=str(record.get("element") or ""),
                sample_text=str(record.get("sampleText") or ""),
            )
        )
    return FontProfile(unique=unique, detailed=detailed)


def build_color_profile(
    raw: Mapping[str, Any],
    *,
    dominant_limit: int = 10,
    detail_limit: int = 20,
) -> ColorProfile:
    unique: list[str] = []
    for value in raw.get("values") or []:
        if is_meaningful_color(value) and value not in unique:
            unique.append(value)

    detailed: list[ColorUsage] = []
    for record in raw.get("details") or []:
        if len(detailed) >= detail_limit:
            break
        value = record.get("color")
        if not is_meaningful_color(value):
            continue
        detailed.append(
            ColorUsage(
                color=value,
                element=str(record.get("element") or ""),
                property=str(record.get("property") or ""),
                sample_text=str(record.get("sampleText") or ""),
            )
        )
    return ColorProfile(unique=unique, dominant=unique[:dominant_limit], detailed=detailed)


async def extract_fonts(
    page: Page,
    *,
    detail_limit: int = 20,
    sample_length: int = 50,
) -> Optional[FontProfile]:
    """Return the page's font profile, or None when the in-page walk fails."""

    try:
        raw = await page.evaluate(
            _FONT_SCRIPT,
            {
                "selectors": TEXT_SELECTORS,
                "headingTags": list(HEADING_TAGS),
                "sampleLength": sample_length,
                "recordLimit": max(detail_limit, 1),
            },
        )
        return build_font_profile(raw or {}, detail_limit=detail_limit)
    except Exception as exc:
        LOGGER.warning("Font extraction failed: %s", exc)
        metrics.record_degraded_step("fonts")
        return None


async def extract_colors(
    page: Page,
    *,
    dominant_limit: int = 10,
    detail_limit: int = 20,
    sample_length: int = 30,
) -> Optional[ColorProfile]:
    try:
        raw = await page.evaluate(
            _COLOR_SCRIPT,
            {
                "properties": list(COLOR_PROPERTIES),
                "detailTags": list(COLOR_DETAIL_TAGS),
                "sampleLength": sample_length,
            },
        )
        return build_color_profile(raw or {}, dominant_limit=dominant_limit, detail_limit=detail_limit)
    except Exception as exc:
        LOGGER.warning("Color extraction failed: %s", exc)
        metrics.record_degraded_step("colors")
        return None


def _iter_records(*groups: Iterable[Mapping[str, Any]] | None) -> Iterable[Mapping[str, Any]]:
    for group in groups:
        for record in group or []:
            if isinstance(record, Mapping):
                yield record
