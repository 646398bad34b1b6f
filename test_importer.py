"""Tests for the JSONL question importer."""
import json

import pytest

import importer
from conftest import FakeSupabase
from exam_engine.models import Question


def line(**fields):
    base = {"question_id": "bs-001", "question_text": "What is H2O?", "options": ["Salt", "Water", "Air"],
            "correct_answer": 1}
    base.update(fields)
    return json.dumps(base)


class TestParseLine:
    def test_parse_line_when_valid_then_questions_row(self):
        row = importer.parse_line(line(), class_tag="JSS1A", subject="Basic Science")
        assert row["class"] == "JSS1A"
        assert row["subject"] == "Basic Science"
        assert row["question_text"] == "What is H2O?"
        assert row["correct_answer"] == 1
        assert Question.from_row(row).options == ("Salt", "Water", "Air")

    def test_parse_line_when_same_input_then_same_id(self):
        a = importer.parse_line(line(), class_tag="JSS1A", subject="Basic Science")
        b = importer.parse_line(line(), class_tag="JSS1A", subject="Basic Science")
        c = importer.parse_line(line(), class_tag="JSS2A", subject="Basic Science")
        assert a["id"] == b["id"]
        assert a["id"] != c["id"]

    def test_parse_line_when_class_in_line_then_overrides_default(self):
        row = importer.parse_line(line(**{"class": "SS1B", "subject": "Physics"}), class_tag="JSS1A")
        assert (row["class"], row["subject"]) == ("SS1B", "Physics")

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "not json",
            "[1, 2]",
            line(options=["only"]),
            line(correct_answer=3),
            line(correct_answer=-1),
            line(correct_answer=True),
            line(correct_answer="1"),
            line(question_id=None),
            line(question_text=""),
            line(**{"class": "Primary 6"}),
        ],
    )
    def test_parse_line_when_invalid_then_none(self, text):
        assert importer.parse_line(text, class_tag="JSS1A", subject="Basic Science") is None

    def test_parse_line_when_no_class_anywhere_then_none(self):
        assert importer.parse_line(line(), subject="Basic Science") is None

    def test_parse_line_when_too_many_options_then_capped(self):
        options = [f"opt {i}" for i in range(12)]
        row = importer.parse_line(line(options=options, correct_answer=4), class_tag="JSS1A", subject="Basic Science")
        assert len(row["options"]) == importer.MAX_OPTIONS
        assert importer.parse_line(line(options=options, correct_answer=11), class_tag="JSS1A",
                                   subject="Basic Science") is None


class TestRunImport:
    @pytest.fixture
    def bank(self, tmp_path):
        path = tmp_path / "bank.jsonl"
        path.write_text("\n".join([line(), line(question_id="bs-002"), "garbage", ""]) + "\n", encoding="utf-8")
        return path

    def test_run_import_when_dry_run_then_no_client(self, bank, monkeypatch):
        monkeypatch.setattr(importer, "get_supabase_uncached", lambda: pytest.fail("should not connect"))
        rows = importer.run_import(bank, class_tag="JSS1A", subject="Basic Science", dry_run=True)
        assert len(rows) == 2

    def test_run_import_when_replace_then_bank_reloaded(self, bank, monkeypatch):
        client = FakeSupabase({"questions": [
            {"id": "old", "class": "JSS1A", "subject": "Basic Science"},
            {"id": "keep", "class": "JSS1A", "subject": "Mathematics"},
        ]})
        monkeypatch.setattr(importer, "get_supabase_uncached", lambda: client)
        importer.run_import(bank, class_tag="JSS1A", subject="Basic Science", replace=True)
        assert sorted(r["id"] for r in client.tables["questions"] if r["subject"] == "Basic Science") == sorted(
            importer.parse_line(raw, "JSS1A", "Basic Science")["id"] for raw in (line(), line(question_id="bs-002"))
        )
        assert any(r["id"] == "keep" for r in client.tables["questions"])

    def test_run_import_when_replace_without_subject_then_raises(self, bank, monkeypatch):
        monkeypatch.setattr(importer, "get_supabase_uncached", FakeSupabase)
        with pytest.raises(ValueError):
            importer.run_import(bank, class_tag="JSS1A", replace=True)

    def test_run_import_when_unknown_class_then_raises(self, bank):
        with pytest.raises(ValueError):
            importer.run_import(bank, class_tag="Year 7")

    def test_run_import_when_file_missing_then_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            importer.run_import(tmp_path / "missing.jsonl")
