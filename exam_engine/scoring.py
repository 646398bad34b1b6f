"""
Scoring Engine: pure functions, no side effects.

score = number of questions whose recorded answer equals the correct option.
Unanswered questions count as incorrect. No partial credit, no weighting.
"""
from collections import Counter
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Mapping, Sequence

from engine import FAIL_GRADE, GRADE_BANDS
from exam_engine.models import Question, ScoreCard, SubmissionCause


def score_answers(questions: Sequence[Question], answers: Mapping[str, int]) -> int:
    return sum(1 for q in questions if answers.get(q.id) == q.correct_option_index)


def percentage_for(score: int, total_questions: int) -> int:
    """round(100 * score / total), halves rounded up. 0 for an empty exam."""
    if total_questions <= 0:
        return 0
    value = Decimal(100 * score) / Decimal(total_questions)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def grade_for(percentage: int) -> str:
    for threshold, grade in GRADE_BANDS:
        if percentage >= threshold:
            return grade
    return FAIL_GRADE


def score_session(questions: Sequence[Question], answers: Mapping[str, int]) -> ScoreCard:
    score = score_answers(questions, answers)
    total = len(questions)
    percentage = percentage_for(score, total)
    return ScoreCard(score=score, total_questions=total, percentage=percentage, grade=grade_for(percentage))


def summarize_results(rows: List[Dict]) -> Dict:
    """
    Class-level summary of ``exam_results`` rows for the results dashboard.

    Returns:
        {completed, average_percentage, flagged, forced, grades}
    """
    if not rows:
        return {"completed": 0, "average_percentage": 0, "flagged": 0, "forced": 0, "grades": {}}

    percentages = []
    for row in rows:
        pct = row.get("percentage")
        if pct is None:
            pct = percentage_for(int(row.get("score") or 0), int(row.get("total_questions") or 0))
        percentages.append(int(pct))

    grades = Counter(row.get("grade") or grade_for(pct) for row, pct in zip(rows, percentages))
    forced = sum(
        1 for row in rows
        if row.get("submission_cause") == SubmissionCause.VIOLATION_THRESHOLD.value
    )
    return {
        "completed": len(rows),
        "average_percentage": percentage_for(sum(percentages), 100 * len(rows)),
        "flagged": sum(1 for row in rows if row.get("cheating_flags")),
        "forced": forced,
        "grades": {grade: grades[grade] for grade in [g for _, g in GRADE_BANDS] + [FAIL_GRADE] if grades[grade]},
    }
