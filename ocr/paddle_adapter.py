"""Thin PaddleOCR adapter: Paddle output -> positioned calendar word tokens."""

from __future__ import annotations

import io
from pathlib import Path
from typing import Any

import numpy as np
from PIL import Image, UnidentifiedImageError

from parser.layout_parser import BBox, Positioned, WordToken, clean_text

try:
    from paddleocr import PaddleOCR
except ModuleNotFoundError:
    PaddleOCR = None


class OcrError(RuntimeError):
    """Raised when an image cannot be recognized."""


def ensure_paddle_available() -> None:
    if PaddleOCR is None:
        raise RuntimeError("Missing dependency `paddleocr`. Install the `ocr` extra (pip install '.[ocr]').")


def create_paddle_ocr(*, lang: str = "en") -> Any:
    ensure_paddle_available()
    normalized_lang = (lang or "").strip()
    if not normalized_lang:
        raise RuntimeError("OCR language must be a non-empty value.")
    return PaddleOCR(
        text_detection_model_name="PP-OCRv5_mobile_det",
        text_recognition_model_name="PP-OCRv5_mobile_rec",
        lang=normalized_lang,
        # oneDNN has shown unsupported PIR attribute conversions on CPU containers.
        enable_mkldnn=False,
        device="cpu",
        use_doc_orientation_classify=False,
        use_doc_unwarping=False,
        use_textline_orientation=False,
    )


def paddle_page_to_tokens(page_result: Any) -> list[WordToken]:
    dt_polys = page_result.get("dt_polys") if hasattr(page_result, "get") else None
    rec_texts = page_result.get("rec_texts") if hasattr(page_result, "get") else None

    if not isinstance(dt_polys, list) or not isinstance(rec_texts, list):
        return []

    tokens: list[WordToken] = []
    for poly, text in zip(dt_polys, rec_texts):
        token = _make_token(poly, text)
        if token is not None:
            tokens.append(token)
    return tokens


def legacy_ocr_result_to_tokens(records: list[Any]) -> list[WordToken]:
    """Convert legacy ``PaddleOCR.ocr(...)`` page output to word tokens."""
    tokens: list[WordToken] = []
    for item in records:
        if not isinstance(item, (list, tuple)) or len(item) != 2:
            continue
        poly, text_info = item
        if not isinstance(text_info, (list, tuple)) or len(text_info) != 2:
            continue
        token = _make_token(poly, text_info[0])
        if token is not None:
            tokens.append(token)
    return tokens


def run_paddle_on_image(image_path: str | Path, ocr: Any | None = None) -> Positioned:
    resolved = Path(image_path).expanduser().resolve()
    if not resolved.exists():
        raise FileNotFoundError(f"Image not found: {resolved}")
    return run_paddle_on_bytes(resolved.read_bytes(), ocr=ocr)


def run_paddle_on_bytes(blob: bytes, ocr: Any | None = None) -> Positioned:
    try:
        with Image.open(io.BytesIO(blob)) as source:
            pixels = np.asarray(source.convert("RGB"))
    except (UnidentifiedImageError, OSError) as error:
        raise OcrError(f"Calendar image could not be decoded: {error}") from error

    client = ocr or create_paddle_ocr()
    try:
        pages = client.predict(pixels)
    except Exception as error:
        raise OcrError(f"OCR failed: {error}") from error

    tokens: list[WordToken] = []
    for page in pages:
        tokens.extend(paddle_page_to_tokens(page))
    return Positioned(tokens=tuple(tokens))


def _make_token(poly: Any, text: Any) -> WordToken | None:
    cleaned = clean_text("" if text is None else str(text))
    coords = _normalize_polygon(poly)
    if not cleaned or coords is None:
        return None
    xs = [point[0] for point in coords]
    ys = [point[1] for point in coords]
    return WordToken(text=cleaned, bbox=BBox(x0=min(xs), y0=min(ys), x1=max(xs), y1=max(ys)))


def _normalize_polygon(poly: Any) -> list[tuple[float, float]] | None:
    if isinstance(poly, np.ndarray):
        poly = poly.tolist()

    if not isinstance(poly, list):
        return None

    result: list[tuple[float, float]] = []
    for point in poly:
        if not isinstance(point, (list, tuple)) or len(point) != 2:
            return None
        try:
            x = float(point[0])
            y = float(point[1])
        except (TypeError, ValueError):
            return None
        result.append((x, y))
    if len(result) < 4:
        return None
    return result
