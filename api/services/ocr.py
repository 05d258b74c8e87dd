from __future__ import annotations

import io
import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, Optional

import pdfplumber
import pytesseract
from PIL import Image, ImageOps, UnidentifiedImageError

from ..config import settings
from .llm_extract import AIConfigurationError, extract_document_fields

logger = logging.getLogger(__name__)


class OCRError(RuntimeError):
    pass


@dataclass
class OCRResult:
    text: str
    confidence: float


@dataclass
class ExtractedDocumentData:
    title: Optional[str] = None
    type: str = "Other"
    expiration_date: Optional[str] = None
    issue_date: Optional[str] = None
    raw_text: str = ""
    dates_found: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


FRONT_MARKER = "--- FRONT SIDE ---"
BACK_MARKER = "--- BACK SIDE ---"
RAW_TEXT_LIMIT = 2000
KEYWORD_WINDOW = 100

_DEVANAGARI_DIGITS = str.maketrans("०१२३४५६७८९", "0123456789")

_MONTHS = (
    "January|February|March|April|May|June|July|August|September|October|November|December"
)
_DAY = r"(?:0?[1-9]|[12][0-9]|3[01])"
_MONTH_NUM = r"(?:0?[1-9]|1[0-2])"
_YEAR = r"(?:19|20)[0-9]{2}"

DATE_PATTERNS = (
    re.compile(rf"\b{_MONTH_NUM}[/\-]{_DAY}[/\-]{_YEAR}\b"),
    re.compile(rf"\b{_DAY}[/\-]{_MONTH_NUM}[/\-]{_YEAR}\b"),
    re.compile(rf"\b{_YEAR}[/\-]{_MONTH_NUM}[/\-]{_DAY}\b"),
    re.compile(rf"\b(?:{_MONTHS})\s+{_DAY},?\s+{_YEAR}\b", re.IGNORECASE),
    re.compile(rf"\b{_DAY}\s+(?:{_MONTHS})\s+{_YEAR}\b", re.IGNORECASE),
    re.compile(rf"\b(?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)[a-z]*\.?\s+{_DAY},?\s+{_YEAR}\b", re.IGNORECASE),
    # Bikram Sambat years written in Devanagari digits
    re.compile(r"(?<!\w)२०[७-९][०-९][/\-](?:[०-९]?[०-९])[/\-](?:[०-९]?[०-९])(?!\w)"),
    re.compile(r"(?<!\w)(?:[०-९]?[०-९])[/\-](?:[०-९]?[०-९])[/\-]२०[७-९][०-९](?!\w)"),
)

EXPIRATION_KEYWORDS = (
    "expir",
    "valid until",
    "valid through",
    "valid thru",
    "expires on",
    "expiration date",
    "exp date",
    "exp:",
    "due date",
    "renewal date",
    "end date",
    "termination",
    "maturity",
    "मिति सम्म",
    "अन्तिम मिति",
    "समाप्ति",
    "म्याद",
)

ISSUE_KEYWORDS = (
    "date of issue",
    "issue date",
    "issued on",
    "issued",
    "doi",
    "जारी मिति",
)

TITLE_KEYWORDS = (
    "policy",
    "certificate",
    "agreement",
    "contract",
    "license",
    "permit",
    "registration",
    "insurance",
    "lease",
    "rental",
    "subscription",
    "invoice",
    "receipt",
    "statement",
    "नागरिकता",
    "प्रमाणपत्र",
    "अनुमतिपत्र",
    "लाइसेन्स",
    "बीमा",
    "सम्झौता",
)

TYPE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "Insurance": (
        "insurance", "policy", "coverage", "premium", "deductible", "claim", "insured",
        "beneficiary", "बीमा", "प्रिमियम", "दाबी",
    ),
    "Rent Agreement": (
        "lease", "rental", "tenant", "landlord", "rent", "property", "apartment", "premises",
        "भाडा", "घरधनी", "भाडामा",
    ),
    "License": (
        "license", "licence", "permit", "registration", "certified", "authorized", "driver",
        "लाइसेन्स", "अनुमति", "प्रमाणपत्र", "नागरिकता", "चालक",
    ),
    "Subscription": (
        "subscription", "membership", "recurring", "monthly", "annual", "renew", "plan",
        "सदस्यता", "मासिक", "वार्षिक",
    ),
}

_NUMERIC_FORMATS = ("%m/%d/%Y", "%m-%d-%Y", "%Y-%m-%d", "%Y/%m/%d", "%d/%m/%Y", "%d-%m-%Y")
_NAMED_FORMATS = ("%b %d %Y", "%d %b %Y")


def extract_dates(text: str) -> list[str]:
    """Every date-looking substring, unique, in pattern then discovery order."""
    found: list[str] = []
    for pattern in DATE_PATTERNS:
        for match in pattern.finditer(text):
            value = match.group(0)
            if value not in found:
                found.append(value)
    return found


def _parse_date(raw: str) -> Optional[date]:
    cleaned = raw.translate(_DEVANAGARI_DIGITS).strip()
    cleaned = re.sub(r"[,.]", " ", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    # "September", "Sept" and "Sep" all become "Sep"
    cleaned = re.sub(r"[A-Za-z]+", lambda m: m.group(0)[:3], cleaned)

    formats = _NAMED_FORMATS if re.search(r"[A-Za-z]", cleaned) else _NUMERIC_FORMATS
    for fmt in formats:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
    return None


def normalize_date(raw: str | None) -> Optional[str]:
    if not raw:
        return None
    parsed = _parse_date(raw)
    return parsed.isoformat() if parsed else None


def _near_keyword(text: str, dates: list[str], keywords: tuple[str, ...]) -> Optional[str]:
    lower_text = text.lower()
    for keyword in keywords:
        keyword_index = lower_text.find(keyword.lower())
        if keyword_index == -1:
            continue
        for value in dates:
            date_index = text.find(value)
            if date_index > keyword_index and date_index - keyword_index < KEYWORD_WINDOW:
                return value
    return None


def find_expiration_date(text: str, dates: list[str]) -> Optional[str]:
    near = _near_keyword(text, dates, EXPIRATION_KEYWORDS)
    if near:
        return near

    parsed = [(value, _parse_date(value)) for value in dates]
    parsed = [(value, when) for value, when in parsed if when is not None]
    if not parsed:
        return None
    # Latest date wins; stable sort keeps discovery order on ties
    parsed.sort(key=lambda item: item[1], reverse=True)
    return parsed[0][0]


def find_issue_date(text: str, dates: list[str]) -> Optional[str]:
    return _near_keyword(text, dates, ISSUE_KEYWORDS)


def extract_title(text: str) -> Optional[str]:
    lines = [line for line in text.split("\n") if line.strip()]

    for line in lines[:10]:
        lower_line = line.lower()
        if any(keyword in lower_line for keyword in TITLE_KEYWORDS):
            return line.strip()[:100]

    for line in lines:
        trimmed = line.strip()
        if 5 < len(trimmed) < 100:
            return trimmed
    return None


def detect_document_type(text: str) -> str:
    lower_text = text.lower()
    best_score = 0
    detected = "Other"
    for document_type, keywords in TYPE_KEYWORDS.items():
        score = sum(1 for keyword in keywords if keyword in lower_text)
        if score > best_score:
            best_score = score
            detected = document_type
    return detected


def extract_document_data(text: str) -> ExtractedDocumentData:
    if not text:
        return ExtractedDocumentData()

    dates = extract_dates(text)
    expiration = find_expiration_date(text, dates)
    issue = find_issue_date(text, dates)
    return ExtractedDocumentData(
        title=extract_title(text),
        type=detect_document_type(text),
        expiration_date=normalize_date(expiration),
        issue_date=normalize_date(issue),
        raw_text=text[:RAW_TEXT_LIMIT],
        dates_found=dates,
    )


def _configure_tesseract() -> None:
    if settings.tesseract_cmd:
        pytesseract.pytesseract.tesseract_cmd = settings.tesseract_cmd


def perform_ocr(image_bytes: bytes) -> OCRResult:
    """Run Tesseract over an image; confidence is the mean word confidence (0-100)."""
    _configure_tesseract()
    try:
        image = Image.open(io.BytesIO(image_bytes))
        image = ImageOps.exif_transpose(image)
        if image.mode != "RGB":
            image = image.convert("RGB")
    except (UnidentifiedImageError, OSError) as exc:
        raise OCRError("Unsupported or corrupt image") from exc

    try:
        data = pytesseract.image_to_data(
            image,
            lang=settings.ocr_languages,
            config="--oem 3 --psm 6",
            output_type=pytesseract.Output.DICT,
        )
    except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as exc:
        raise OCRError(f"OCR failed: {exc}") from exc

    lines: dict[tuple[int, int, int], list[str]] = {}
    confidences: list[float] = []
    for index, word in enumerate(data.get("text", [])):
        if not word or not word.strip():
            continue
        key = (data["block_num"][index], data["par_num"][index], data["line_num"][index])
        lines.setdefault(key, []).append(word)
        conf = float(data["conf"][index])
        if conf >= 0:
            confidences.append(conf)

    text = "\n".join(" ".join(words) for _, words in sorted(lines.items()))
    confidence = sum(confidences) / len(confidences) if confidences else 0.0
    return OCRResult(text=text, confidence=round(confidence, 2))


def extract_pdf_text(data: bytes) -> OCRResult:
    """Read the text layer of a PDF; scanned PDFs without one yield empty text."""
    try:
        with pdfplumber.open(io.BytesIO(data)) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
    except Exception as exc:  # pdfplumber raises assorted pdfminer errors
        raise OCRError("Unreadable PDF") from exc
    text = "\n".join(pages).strip()
    return OCRResult(text=text, confidence=100.0 if text else 0.0)


def read_text(data: bytes, content_type: str | None) -> OCRResult:
    if (content_type or "").lower() == "application/pdf" or data[:5] == b"%PDF-":
        return extract_pdf_text(data)
    return perform_ocr(data)


def combine_sides(front: str, back: str | None) -> str:
    if not back:
        return front
    return f"{FRONT_MARKER}\n{front}\n\n{BACK_MARKER}\n{back}"


def merge_results(regex: ExtractedDocumentData, ai: Any, full_text: str) -> ExtractedDocumentData:
    """AI fields override regex guesses when present; raw text and found dates stay."""
    merged = ExtractedDocumentData(
        title=regex.title,
        type=regex.type,
        expiration_date=regex.expiration_date,
        issue_date=regex.issue_date,
        raw_text=full_text,
        dates_found=list(regex.dates_found),
    )
    if ai is None:
        return merged

    if ai.title:
        merged.title = ai.title
    # an unmapped model label never replaces a keyword match
    if ai.type and (ai.type != "Other" or merged.type == "Other"):
        merged.type = ai.type
    if ai.expiration_date:
        merged.expiration_date = ai.expiration_date
    if ai.issue_date:
        merged.issue_date = ai.issue_date
    merged.metadata = dict(ai.metadata or {})
    if ai.name:
        merged.metadata.setdefault("name", ai.name)
    return merged


def process_document(
    front: bytes,
    back: bytes | None = None,
    *,
    front_type: str | None = None,
    back_type: str | None = None,
    use_ai: bool = True,
) -> tuple[ExtractedDocumentData, float]:
    """OCR one or two sides, run the regex pass, then let the hosted model refine it."""
    front_result = read_text(front, front_type)
    confidence = front_result.confidence
    back_text = None
    if back:
        back_result = read_text(back, back_type)
        back_text = back_result.text
        confidence = (front_result.confidence + back_result.confidence) / 2

    text = combine_sides(front_result.text, back_text)
    regex_data = extract_document_data(text)

    ai_data = None
    if use_ai and text.strip():
        try:
            ai_data = extract_document_fields(text)
        except AIConfigurationError:
            logger.info("AI extraction skipped: no API key configured")
        except Exception:  # provider and validation errors fall back to regex
            logger.exception("AI extraction failed; using regex result")

    return merge_results(regex_data, ai_data, text), round(confidence, 2)
