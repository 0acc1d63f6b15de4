"""OCR text extraction and field parsing.

Handles all image-to-data conversion: Tesseract recognition with an optional
character whitelist, digit extraction from noisy reads, name cleanup, and
assembly of a validated ``PlayerRecord``. No navigation or storage logic
belongs here.
"""

import logging
import re
from dataclasses import asdict, dataclass
from typing import Optional

import numpy as np
import pytesseract

from capture import extract, prepare_for_ocr
from config import MIN_ID_DIGITS, TESSERACT_CMD, Rect
from exceptions import RecognitionWeak

logger = logging.getLogger(__name__)

if TESSERACT_CMD:
    pytesseract.pytesseract.tesseract_cmd = TESSERACT_CMD

# First run of digits, allowing thousands separators and spaces inside it.
_NUMBER_RE = re.compile(r"\d[\d\s,.]*")

# Raw OCR keys accepted for each record field.
_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("id", "player_id", "playerId"),
    "kp": ("kp", "killpoints", "kill_points"),
    "dead": ("dead", "deads", "deaths"),
}


@dataclass(frozen=True)
class PlayerRecord:
    """One structurally valid scan of a player profile."""

    player_id: int
    name: str
    power: int
    kill_points: int
    dead: int
    t1: int
    t2: int
    t3: int
    t4: int
    t5: int

    def metrics(self) -> dict[str, int]:
        """All numeric fields except the ID, keyed by column name."""
        values = asdict(self)
        del values["player_id"]
        del values["name"]
        return values


def recognize(image: np.ndarray, whitelist: Optional[str] = None) -> str:
    """Run Tesseract on a single-line image region.

    Args:
        image: A preprocessed crop (see ``capture.prepare_for_ocr``).
        whitelist: Characters Tesseract may emit; ``None`` for no limit.

    Returns:
        The recognized text, stripped.
    """
    options = "--psm 7"
    if whitelist:
        options += f" -c tessedit_char_whitelist={whitelist}"
    text = pytesseract.image_to_string(image, config=options).strip()
    logger.debug("OCR %r -> %r", options, text)
    return text


def read_region(
    frame: np.ndarray,
    rect: Rect,
    label: str = "",
    whitelist: Optional[str] = None,
) -> str:
    """Crop *rect* from *frame*, preprocess it, and OCR it.

    Raises:
        BoundsInvalid: If *rect* lies outside *frame*.
    """
    return recognize(prepare_for_ocr(extract(frame, rect, label)), whitelist)


def digits_only(raw_text: str) -> str:
    """Return the digits of *raw_text* in order."""
    return re.sub(r"\D", "", raw_text or "")


def parse_number(raw_text: Optional[str]) -> int:
    """Parse the first number in *raw_text*, ignoring separators.

    ``"12,345,678"``, ``"12 345 678"`` and ``"Power: 12.345.678"`` all give
    ``12345678``. Text without any digit gives ``0``.
    """
    if not raw_text:
        return 0
    match = _NUMBER_RE.search(raw_text)
    if match is None:
        return 0
    return int(digits_only(match.group(0)))


def normalize_name(raw_text: Optional[str]) -> str:
    """Collapse whitespace runs and trim a copied or OCR'd player name."""
    return re.sub(r"\s+", " ", raw_text or "").strip()


def _lookup(texts: dict[str, str], field: str) -> str:
    for key in _FIELD_ALIASES.get(field, (field,)):
        if texts.get(key):
            return texts[key]
    return ""


def parse_player_record(
    texts: dict[str, str],
    min_id_digits: int = MIN_ID_DIGITS,
) -> PlayerRecord:
    """Build a ``PlayerRecord`` from raw per-field texts.

    Args:
        texts: Raw text per field key (``id``, ``name``, ``power``, ``kp``,
            ``dead``, ``t1``..``t5``).
        min_id_digits: Minimum digit count for the player ID.

    Raises:
        RecognitionWeak: If the ID has fewer than *min_id_digits* digits.
    """
    raw_id = _lookup(texts, "id")
    if is_weak_id(raw_id, min_id_digits):
        raise RecognitionWeak("id", raw_id, min_id_digits)

    return PlayerRecord(
        player_id=parse_number(raw_id),
        name=normalize_name(texts.get("name")),
        power=parse_number(texts.get("power")),
        kill_points=parse_number(_lookup(texts, "kp")),
        dead=parse_number(_lookup(texts, "dead")),
        t1=parse_number(texts.get("t1")),
        t2=parse_number(texts.get("t2")),
        t3=parse_number(texts.get("t3")),
        t4=parse_number(texts.get("t4")),
        t5=parse_number(texts.get("t5")),
    )


def is_weak_id(raw_text: str, min_id_digits: int = MIN_ID_DIGITS) -> bool:
    """True if *raw_text* does not carry enough digits to be a player ID."""
    return len(digits_only(raw_text)) < min_id_digits

