"""
Document Analyzer
Extracts text from uploaded compliance documents and asks the model for a
category, tags, description and summary. Also hosts the tag-suggestion
prompt used by the tagging endpoint.
"""

import logging
from io import BytesIO
from typing import List, Dict, Any, Tuple

import pandas as pd
from PyPDF2 import PdfReader
from docx import Document

from complio import chatbot_agent
from complio.compliance_score_engine import CATEGORIES

logger = logging.getLogger(__name__)

MAX_EXTRACTED_CHARS = 8000
MAX_TAGGING_CHARS = 6000
MAX_ANALYSIS_TAGS = 5

PDF_TYPES = {"application/pdf"}
WORD_TYPES = {
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/msword",
}
SPREADSHEET_TYPES = {
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.ms-excel",
}
IMAGE_TYPES = {"image/png", "image/jpeg", "image/jpg"}

ANALYSIS_SYSTEM_PROMPT = "You are a compliance expert helping small businesses organize their documents."

TAGGING_SYSTEM_PROMPT = """You are an assistant that assigns tags to regulatory or business documents for the compl.io compliance platform.
- Only select from the provided tag list.
- Pick the tags that best match the document.
- Return a strict JSON object: {"tags": ["tag-a", "tag-b"], "reason": "short explanation"}
- If nothing fits, return an empty array.
- Never invent new tags.
"""


# ============================================================================
# Text Extraction
# ============================================================================

def _extract_pdf_text(content: bytes) -> str:
    reader = PdfReader(BytesIO(content))
    return "\n".join(page.extract_text() or "" for page in reader.pages)


def _extract_word_text(content: bytes) -> str:
    doc = Document(BytesIO(content))
    return "\n".join(p.text for p in doc.paragraphs)


def _extract_spreadsheet_text(content: bytes) -> str:
    sheets = pd.read_excel(BytesIO(content), sheet_name=None, header=None)
    parts = []
    for sheet_name, df in sheets.items():
        sheet_text = df.fillna("").astype(str).to_csv(sep="\t", index=False, header=False)
        parts.append(f"Sheet: {sheet_name}\n{sheet_text}")
    return "\n\n".join(parts)


def extract_document_text(content: bytes, file_type: str, filename: str) -> Tuple[str, str]:
    """
    Extract plain text from a stored document.

    Returns (text, extraction_method). Falls back to the filename when the
    type is unsupported or extraction fails; text is capped at 8000 chars.
    """
    try:
        if file_type in PDF_TYPES:
            text, method = _extract_pdf_text(content), "PDF text extraction"
        elif file_type in WORD_TYPES:
            text, method = _extract_word_text(content), "Word document extraction"
        elif file_type in SPREADSHEET_TYPES:
            text, method = _extract_spreadsheet_text(content), "Excel extraction"
        elif file_type in IMAGE_TYPES:
            text, method = chatbot_agent.transcribe_image(content, file_type), "Image OCR via Gemini vision"
        else:
            text, method = f"Filename: {filename}", "Filename only"
    except Exception as e:
        logger.warning(f"Text extraction failed for {filename} ({file_type}): {e}")
        return f"Filename: {filename}", "Filename only (extraction failed)"

    if len(text) > MAX_EXTRACTED_CHARS:
        text = text[:MAX_EXTRACTED_CHARS] + "... [text truncated due to length]"
    return text, method


# ============================================================================
# Analysis
# ============================================================================

def build_analysis_prompt(filename: str, file_type: str, extraction_method: str, text: str) -> str:
    return f"""You are a compliance expert helping small businesses organize their documents.

Analyze this business document and provide:

1. **Category**: Choose ONE category from: {", ".join(CATEGORIES)}
2. **Tags**: Provide up to 5 relevant tags (short keywords, lowercase)
3. **Description**: A brief 1-2 sentence description of what the document is
4. **Summary**: A concise summary (2-4 sentences) of the key information, important dates, requirements, or action items mentioned in the document

Document filename: {filename}
Document type: {file_type}
Extraction method: {extraction_method}

Document content:
{text}

Respond in JSON format:
{{
  "category": "one of the categories above",
  "tags": ["tag1", "tag2", "tag3"],
  "description": "brief description of the document",
  "summary": "2-4 sentence summary of key information, dates, requirements, or action items"
}}"""


def normalize_analysis(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce model output into the stored document fields."""
    category = raw.get("category")
    if isinstance(category, str):
        match = next((c for c in CATEGORIES if c.lower() == category.strip().lower()), None)
    else:
        match = None
    if category and not match:
        logger.info(f"Discarding unknown category from model: {category!r}")

    tags = []
    for tag in raw.get("tags") or []:
        if not isinstance(tag, str):
            continue
        tag = tag.strip().lower()
        if tag and tag not in tags:
            tags.append(tag)

    description = raw.get("description") or None
    summary = raw.get("summary") or None

    return {
        "category": match,
        "tags": tags[:MAX_ANALYSIS_TAGS],
        "description": description,
        "summary": summary,
    }


def analyze_document(content: bytes, file_type: str, filename: str) -> Dict[str, Any]:
    """Extract text and classify a document. Raises AIServiceError on model failure."""
    text, method = extract_document_text(content, file_type, filename)
    logger.info(f"Analyzing {filename} via {method} ({len(text)} chars)")

    prompt = build_analysis_prompt(filename, file_type, method, text)
    raw, _usage = chatbot_agent.generate_json(prompt, ANALYSIS_SYSTEM_PROMPT, temperature=0.2)
    return normalize_analysis(raw)


# ============================================================================
# Tag Suggestion
# ============================================================================

def select_allowed_tags(candidates: Any, allowed: List[str], max_tags: int) -> List[str]:
    """Keep only allowed tags, first occurrence wins, capped at max_tags."""
    selected = []
    for tag in candidates or []:
        if isinstance(tag, str) and tag in allowed and tag not in selected:
            selected.append(tag)
    return selected[:max_tags]


def suggest_tags(document: str, tags: List[str], max_tags: int = 5) -> Dict[str, Any]:
    """Ask the model to tag a document using only the supplied tag list."""
    tag_options = [t.strip() for t in tags if isinstance(t, str) and t.strip()]
    snippet = document[:MAX_TAGGING_CHARS]
    option_lines = "".join(f"\n- {tag}" for tag in tag_options)

    prompt = (
        f'Document snippet:\n"""{snippet}"""\n\n'
        f"Available tags:{option_lines}\n\n"
        f"Return up to {max_tags} tags in JSON."
    )

    try:
        parsed, usage = chatbot_agent.generate_json(prompt, TAGGING_SYSTEM_PROMPT, temperature=0.1)
    except chatbot_agent.AIResponseFormatError:
        parsed, usage = {"tags": [], "reason": "Unable to parse model response"}, None

    return {
        "tags": select_allowed_tags(parsed.get("tags"), tag_options, max_tags),
        "reason": parsed.get("reason"),
        "usage": usage,
    }
