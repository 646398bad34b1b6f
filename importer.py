"""Ingest .jsonl question banks: one question per line; bulk UPSERT into questions."""
import json
import argparse
import logging
from pathlib import Path
from typing import Optional
from uuid import uuid5, NAMESPACE_DNS

from db import get_supabase_uncached, upsert_questions_bulk, delete_questions_by_subject
from engine import CLASS_TAGS, SUBJECTS

logger = logging.getLogger(__name__)

MAX_OPTIONS = 10


def parse_line(line: str, class_tag: Optional[str] = None, subject: Optional[str] = None) -> Optional[dict]:
    """
    Parse one JSONL line into a questions row. Returns None if invalid/skip.

    Line shape: {"question_id", "question_text" (or "text"), "options",
    "correct_answer" (or "correct_option"), "class"?, "subject"?}. The
    ``class_tag``/``subject`` arguments fill in lines that omit them.
    """
    line = line.strip()
    if not line:
        return None
    try:
        raw = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(raw, dict):
        return None
    question_id = raw.get("question_id")
    text = (raw.get("question_text") or raw.get("text") or "").strip()
    if not question_id or not text:
        return None
    row_class = (raw.get("class") or class_tag or "").strip()
    row_subject = (raw.get("subject") or subject or "").strip()
    if row_class not in CLASS_TAGS or not row_subject:
        return None
    options = raw.get("options")
    if not isinstance(options, list) or len(options) < 2:
        return None
    correct = raw.get("correct_answer", raw.get("correct_option"))
    # a wrong key would silently mis-grade every student, so skip rather than default
    if not isinstance(correct, int) or isinstance(correct, bool) or not 0 <= correct < len(options):
        return None
    if len(options) > MAX_OPTIONS:
        if correct >= MAX_OPTIONS:
            return None
        options = options[:MAX_OPTIONS]

    uid = str(uuid5(NAMESPACE_DNS, f"{row_class}:{row_subject}:{question_id}"))
    return {
        "id": uid,
        "class": row_class,
        "subject": row_subject,
        "question_text": text,
        "options": [str(o) for o in options],
        "correct_answer": correct,
    }


def load_and_transform(path: Path, class_tag: Optional[str] = None, subject: Optional[str] = None):
    """Read JSONL and yield transformed question rows."""
    skipped = 0
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            row = parse_line(line, class_tag=class_tag, subject=subject)
            if row:
                yield row
            elif line.strip():
                skipped += 1
    if skipped:
        logger.warning(f"Skipped {skipped} invalid lines in {path}")


def run_import(
    jsonl_path: Path,
    class_tag: Optional[str] = None,
    subject: Optional[str] = None,
    chunk_size: int = 200,
    dry_run: bool = False,
    replace: bool = False,
):
    if not jsonl_path.exists():
        raise FileNotFoundError(f"JSONL not found: {jsonl_path}")
    if class_tag and class_tag not in CLASS_TAGS:
        raise ValueError(f"Unknown class {class_tag!r}")
    if subject and subject not in SUBJECTS:
        logger.warning(f"Subject {subject!r} is not in the standard subject list")
    rows = list(load_and_transform(jsonl_path, class_tag=class_tag, subject=subject))
    if dry_run:
        print(f"Dry run: would upsert {len(rows)} questions from {jsonl_path}")
        if rows:
            print("Sample row:", rows[0])
        return rows
    client = get_supabase_uncached()
    if replace:
        if not (class_tag and subject):
            raise ValueError("--replace needs --class and --subject")
        delete_questions_by_subject(client, class_tag, subject)
        print(f"Deleted existing {class_tag} {subject} questions")
    upsert_questions_bulk(client, rows, chunk_size=chunk_size)
    print(f"Upserted {len(rows)} questions from {jsonl_path}")
    return rows


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
    parser = argparse.ArgumentParser(description="Import a JSONL question bank into Supabase questions.")
    parser.add_argument("jsonl", help="Path to .jsonl")
    parser.add_argument("--class", dest="class_tag", default=None, help="Class for lines without one (e.g. JSS1A)")
    parser.add_argument("--subject", default=None, help="Subject for lines without one")
    parser.add_argument("--chunk-size", type=int, default=200, help="Upsert chunk size (default 200)")
    parser.add_argument("--dry-run", action="store_true", help="Parse only, do not upsert")
    parser.add_argument("--replace", action="store_true", help="Delete the class/subject bank first (fresh import)")
    args = parser.parse_args()
    run_import(
        Path(args.jsonl),
        class_tag=args.class_tag,
        subject=args.subject,
        chunk_size=args.chunk_size,
        dry_run=args.dry_run,
        replace=args.replace,
    )
