"""Exam rules: timing, violation threshold, grade bands. No UI."""
# Grade: >=90 A+, >=80 A, >=70 B, >=60 C, >=50 D, else F
# Timer: remaining = time_limit - (now - started_at), never below zero
import os

from dotenv import load_dotenv

load_dotenv()

EXAM_DURATION_MINUTES = int(os.getenv("EXAM_DURATION_MINUTES", "60"))
MAX_VIOLATIONS = int(os.getenv("EXAM_MAX_VIOLATIONS", "2"))
TICK_INTERVAL_SECONDS = 1.0
WARNING_SECONDS = 300  # countdown turns red below this
DEVTOOLS_GAP_PX = 200

GRADE_BANDS = ((90, "A+"), (80, "A"), (70, "B"), (60, "C"), (50, "D"))
FAIL_GRADE = "F"

CLASS_TAGS = [
    "JSS1A", "JSS1B", "JSS1C", "JSS2A", "JSS2B", "JSS2C", "JSS3A", "JSS3B", "JSS3C",
    "SS1A", "SS1B", "SS1C", "SS2A", "SS2B", "SS2C", "SS3A", "SS3B", "SS3C",
]
SUBJECTS = [
    "Mathematics", "English Language", "Biology", "Chemistry", "Physics", "Geography",
    "Economics", "Government", "Literature in English", "Agricultural Science",
    "Computer Studies", "Civic Education", "Basic Science", "Basic Technology",
    "Cultural and Creative Arts", "Business Studies", "French", "Hausa", "Igbo", "Yoruba",
]
