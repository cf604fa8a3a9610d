import re
from typing import List, Optional

import pdfplumber

TEXT_SUFFIXES = (".txt", ".md")
HEADER_CELLS = {"parameter", "description", "scoring guide"}
SECTION_PREFIXES = ("scoring rubric", "cv match evaluation",
                    "project deliverable evaluation", "overall candidate evaluation")


def parse_pdf_text(path: str, max_pages: Optional[int] = None) -> str:
    text_parts = []
    with pdfplumber.open(path) as pdf:
        pages = pdf.pages if max_pages is None else pdf.pages[:max_pages]
        for page in pages:
            t = page.extract_text() or ""
            text_parts.append(t)
    return "\n".join(text_parts)


def clean_text(text: str) -> str:
    text = text.replace("\x00", "")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\s+\n", "\n", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def extract_text(path: str) -> str:
    """Plain text of a candidate or reference document (PDF, .txt or .md)."""
    if path.lower().endswith(TEXT_SUFFIXES):
        with open(path, encoding="utf-8") as fh:
            return clean_text(fh.read())
    return clean_text(parse_pdf_text(path))


def _is_header_row(row: List[str]) -> bool:
    cells = {(c or "").strip().lower() for c in row}
    return cells >= HEADER_CELLS


def _normalize_row(row) -> List[str]:
    r = [(c or "").strip() for c in row] + ["", "", ""]
    return r[:3]  # Parameter, Description, Guide


def _extract_weight(text: str) -> Optional[int]:
    m = re.search(r"(\d+)\s*%", text or "")
    return int(m.group(1)) if m else None


def rubric_rows_to_markdown(rows: List[List[str]]) -> str:
    """Consolidate rubric table rows into one markdown document.

    The rubric is embedded and read as a whole, so weights stay next to the
    parameters they apply to.
    """
    md_lines = ["# Scoring Rubric\n"]
    for raw in rows:
        r = _normalize_row(raw)
        if not any(r) or _is_header_row(r):
            continue
        param_raw, desc, guide = r
        if not param_raw:
            continue
        weight = _extract_weight(param_raw)
        param = re.sub(r"\(.*?weight.*?\)", "", param_raw, flags=re.I).strip()

        if param.lower().startswith(SECTION_PREFIXES):
            md_lines += [f"## {param}", ""]
            continue

        md_lines += [
            f"### {param}" + (f" (Weight: {weight}%)" if weight is not None else ""),
            f"**Description:** {desc}" if desc else "",
            f"**Guide:** {guide}" if guide else "",
            "",
        ]
    return "\n".join(ln for ln in md_lines if ln is not None).strip()


def extract_rubric_text(path: str) -> str:
    """Rubric PDFs are mostly tables; fall back to plain text when none are found."""
    if not path.lower().endswith(".pdf"):
        return extract_text(path)
    rows = []
    with pdfplumber.open(path) as pdf:
        for page in pdf.pages:
            for tbl in (page.extract_tables() or []):
                rows.extend(r for r in tbl if r)
    if not rows:
        return extract_text(path)
    md = rubric_rows_to_markdown(rows)
    # tables without parameter rows carry nothing useful
    if md.count("###") == 0:
        return extract_text(path)
    return md
