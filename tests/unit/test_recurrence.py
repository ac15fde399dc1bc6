import pytest
from datetime import date

from app.core.exceptions import ValidationException
from app.utils.recurrence import build_recurrence_rule


class TestBuildRecurrenceRule:
    def test_count_rule(self):
        assert build_recurrence_rule("WEEKLY", count=4) == "RRULE:FREQ=WEEKLY;COUNT=4"

    def test_until_rule_covers_whole_end_day(self):
        rule = build_recurrence_rule("DAILY", end_date=date(2025, 3, 31))
        assert rule == "RRULE:FREQ=DAILY;UNTIL=20250331T235959Z"

    @pytest.mark.parametrize("pattern", ["DAILY", "WEEKLY", "MONTHLY", "YEARLY"])
    def test_count_takes_precedence_over_end_date(self, pattern):
        rule = build_recurrence_rule(pattern, count=3, end_date=date(2025, 12, 31))
        assert rule == f"RRULE:FREQ={pattern};COUNT=3"
        assert "UNTIL" not in rule

    def test_pattern_is_case_insensitive(self):
        assert build_recurrence_rule("monthly") == "RRULE:FREQ=MONTHLY"

    def test_end_date_accepts_iso_string(self):
        rule = build_recurrence_rule("YEARLY", end_date="2030-01-15")
        assert rule == "RRULE:FREQ=YEARLY;UNTIL=20300115T235959Z"

    @pytest.mark.parametrize("pattern", ["HOURLY", "", None, "fortnightly"])
    def test_invalid_pattern_rejected(self, pattern):
        with pytest.raises(ValidationException):
            build_recurrence_rule(pattern, count=2)

    def test_invalid_end_date_rejected(self):
        with pytest.raises(ValidationException):
            build_recurrence_rule("DAILY", end_date="next tuesday")
