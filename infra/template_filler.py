"""Literal ``{{KEY}}`` substitution over DOCX (ZIP/XML) or plain-text templates."""

from __future__ import annotations

import io
import re
import zipfile
from dataclasses import dataclass
from typing import Callable, Mapping
from xml.sax.saxutils import escape

DOCUMENT_PART = "word/document.xml"
HEADER_FOOTER_PART_RE = re.compile(r"^word/(?:header|footer)\d*\.xml$")
PLACEHOLDER_RE = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")
KEY_WORD_RE = re.compile(r"[A-Z]?[a-z0-9]+|[A-Z0-9]+(?![a-z])")

FORMAT_DOCX = "docx"
FORMAT_TEXT = "txt"


class TemplateError(ValueError):
    """Raised when a template buffer is neither a usable DOCX nor UTF-8 text."""


@dataclass(frozen=True)
class FilledDocument:
    content: bytes
    format: str


def fill_template(buffer: bytes, values: Mapping[str, str]) -> FilledDocument:
    aliases = build_aliases(values)
    if zipfile.is_zipfile(io.BytesIO(buffer)):
        return FilledDocument(content=_fill_docx(buffer, aliases), format=FORMAT_DOCX)

    try:
        text = buffer.decode("utf-8-sig")
    except UnicodeDecodeError as error:
        raise TemplateError("Template is neither a DOCX document nor UTF-8 text.") from error
    return FilledDocument(content=substitute(text, aliases).encode("utf-8"), format=FORMAT_TEXT)


def build_aliases(values: Mapping[str, str]) -> dict[str, str]:
    """Map each key and its case/spelling variants to the value.

    Exact keys always win over variants generated from other keys.
    """
    aliases = {key: str(value) for key, value in values.items()}
    for key, value in values.items():
        for variant in key_variants(key):
            aliases.setdefault(variant, str(value))
    return aliases


def key_variants(key: str) -> list[str]:
    words = [word.lower() for word in KEY_WORD_RE.findall(key)]
    if not words:
        return [key.lower(), key.upper()]
    snake = "_".join(words)
    spaced = " ".join(words)
    camel = words[0] + "".join(word.title() for word in words[1:])
    return [
        key.lower(),
        key.upper(),
        key.title(),
        snake,
        snake.upper(),
        camel,
        camel[:1].upper() + camel[1:],
        spaced,
        spaced.upper(),
        spaced.title(),
    ]


def substitute(text: str, aliases: Mapping[str, str], *, transform: Callable[[str], str] | None = None) -> str:
    """Replace known placeholders in a single pass; unknown ones stay as written."""

    def replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name not in aliases:
            return match.group(0)
        value = aliases[name]
        return transform(value) if transform is not None else value

    return PLACEHOLDER_RE.sub(replace, text)


def _fill_docx(buffer: bytes, aliases: Mapping[str, str]) -> bytes:
    try:
        source = zipfile.ZipFile(io.BytesIO(buffer))
    except zipfile.BadZipFile as error:
        raise TemplateError("Invalid DOCX: unreadable ZIP container.") from error

    with source:
        if DOCUMENT_PART not in source.namelist():
            raise TemplateError(f"Invalid DOCX: missing {DOCUMENT_PART}")

        output = io.BytesIO()
        with zipfile.ZipFile(output, "w") as target:
            for info in source.infolist():
                data = source.read(info.filename)
                if info.filename == DOCUMENT_PART or HEADER_FOOTER_PART_RE.match(info.filename):
                    xml = data.decode("utf-8")
                    data = substitute(xml, aliases, transform=escape).encode("utf-8")
                target.writestr(info, data)
    return output.getvalue()
