"""Grade and graduating class year helpers.

School years run from July 1 to June 30, so an event held in spring belongs
to the school year ending that same calendar year and an autumn event to the
one ending the next year.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from core.constants import GradeDefaults


def school_year_ending_year(event_date: date) -> int:
    """Return the calendar year in which the event's school year ends."""
    if event_date.month >= GradeDefaults.SCHOOL_YEAR_START_MONTH:
        return event_date.year + 1
    return event_date.year


def current_grade(graduating_class_year: Optional[int], event_date: date) -> Optional[int]:
    """Convert a graduating class year into a 9-12 grade for the event.

    Returns None when the class year is unknown.
    """
    if graduating_class_year is None:
        return None
    grade = 12 - (graduating_class_year - school_year_ending_year(event_date))
    return max(GradeDefaults.MIN_GRADE, min(GradeDefaults.MAX_GRADE, grade))


def has_graduated(graduating_class_year: Optional[int], event_date: date) -> bool:
    """A class that finished before the event's school year is graduated."""
    if graduating_class_year is None:
        return False
    return graduating_class_year < school_year_ending_year(event_date)


def graduating_class_year(grade: int, event_date: date) -> int:
    """Convert a 9-12 grade back into a graduating class year."""
    return school_year_ending_year(event_date) + (12 - grade)
