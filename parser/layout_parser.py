"""Deterministic OCR word normalization and row clustering."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Union


@dataclass(frozen=True)
class BBox:
    x0: float
    y0: float
    x1: float
    y1: float

    @property
    def mid_x(self) -> float:
        return (self.x0 + self.x1) / 2.0

    @property
    def mid_y(self) -> float:
        return (self.y0 + self.y1) / 2.0


@dataclass(frozen=True)
class WordToken:
    text: str
    bbox: BBox


@dataclass(frozen=True)
class Row:
    tokens: tuple[WordToken, ...]
    y_min: float
    y_max: float

    @property
    def text(self) -> str:
        return clean_text(" ".join(token.text for token in self.tokens))


@dataclass(frozen=True)
class PlainText:
    text: str


@dataclass(frozen=True)
class Positioned:
    tokens: tuple[WordToken, ...]


OcrOutput = Union[PlainText, Positioned]


def clean_text(value: str) -> str:
    return " ".join(value.split())


def split_text_lines(text: str) -> list[str]:
    lines = [clean_text(line) for line in text.splitlines()]
    return [line for line in lines if line]


def normalize_ocr_output(value: Any) -> OcrOutput:
    """Coerce raw OCR output (text or word records) into an OcrOutput variant."""
    if isinstance(value, PlainText):
        return value
    if isinstance(value, Positioned):
        value = value.tokens
    if isinstance(value, bytes):
        value = value.decode("utf-8")
    if isinstance(value, str):
        return PlainText(text=value)
    if isinstance(value, dict) and "words" in value:
        value = value["words"]
    if isinstance(value, (list, tuple)):
        tokens: list[WordToken] = []
        for item in value:
            tokens.extend(split_words(coerce_token(item)))
        return Positioned(tokens=tuple(tokens))
    raise TypeError(f"Unsupported OCR output: {type(value)!r}")


def split_words(token: WordToken) -> list[WordToken]:
    """Split a multi-word (line-level) box into word boxes.

    Widths are apportioned by character count, spaces included.
    """
    words = token.text.split()
    if len(words) <= 1:
        return [WordToken(text=words[0], bbox=token.bbox)] if words else []

    joined_length = len(" ".join(words))
    unit = (token.bbox.x1 - token.bbox.x0) / joined_length
    result: list[WordToken] = []
    offset = 0
    for word in words:
        x0 = token.bbox.x0 + offset * unit
        result.append(
            WordToken(text=word, bbox=BBox(x0=x0, y0=token.bbox.y0, x1=x0 + len(word) * unit, y1=token.bbox.y1))
        )
        offset += len(word) + 1
    return result


def coerce_token(value: Any) -> WordToken:
    if isinstance(value, WordToken):
        return value
    if isinstance(value, dict):
        text = str(value.get("text", ""))
        bbox = value.get("bbox")
        if isinstance(bbox, dict):
            return WordToken(
                text=text,
                bbox=BBox(
                    x0=float(bbox.get("x0", 0)),
                    y0=float(bbox.get("y0", 0)),
                    x1=float(bbox.get("x1", 0)),
                    y1=float(bbox.get("y1", 0)),
                ),
            )
        if isinstance(bbox, (list, tuple)) and len(bbox) == 4:
            x0, y0, x1, y1 = (float(item) for item in bbox)
            return WordToken(text=text, bbox=BBox(x0=x0, y0=y0, x1=x1, y1=y1))
        x = float(value.get("x", 0))
        y = float(value.get("y", 0))
        return WordToken(
            text=text,
            bbox=BBox(x0=x, y0=y, x1=x + float(value.get("w", 0)), y1=y + float(value.get("h", 0))),
        )
    raise TypeError(f"Unsupported token value: {type(value)!r}")


def cluster_rows(tokens: Iterable[WordToken]) -> list[Row]:
    """Group tokens into horizontal rows by vertical midpoint containment.

    Greedy single pass in ``y0`` order: a token joins the first row whose band
    contains its midpoint and the row grows to the union of both boxes. A
    token taller than two visual rows can merge them.
    """
    ordered = sorted(tokens, key=lambda token: (token.bbox.y0, token.bbox.x0))

    bands: list[list[float]] = []
    members: list[list[WordToken]] = []
    for token in ordered:
        mid = token.bbox.mid_y
        for index, band in enumerate(bands):
            if band[0] <= mid <= band[1]:
                band[0] = min(band[0], token.bbox.y0)
                band[1] = max(band[1], token.bbox.y1)
                members[index].append(token)
                break
        else:
            bands.append([token.bbox.y0, token.bbox.y1])
            members.append([token])

    rows = [
        Row(
            tokens=tuple(sorted(row_tokens, key=lambda token: token.bbox.x0)),
            y_min=band[0],
            y_max=band[1],
        )
        for band, row_tokens in zip(bands, members)
    ]
    rows.sort(key=lambda row: row.y_min)
    return rows
