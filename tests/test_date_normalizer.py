from datetime import date, datetime

import pytest

from resume_engine.utils.date_normalizer import NEVER, PRESENT, normalize_date


class TestNormalizeDate:
    @pytest.mark.parametrize("value", ["Present", "current", " ONGOING ", "to date"])
    def test_ongoing_phrases(self, value):
        assert normalize_date(value) == PRESENT

    @pytest.mark.parametrize("value", ["Never", "never expires", "Lifetime", "No Expiration"])
    def test_never_phrases(self, value):
        assert normalize_date(value) == NEVER

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("2021-06-15", date(2021, 6, 15)),
            ("2021-06-15T10:00:00Z", date(2021, 6, 15)),
            ("03/2019", date(2019, 3, 1)),
            ("2019-3", date(2019, 3, 1)),
            ("2018", date(2018, 1, 1)),
            ("Jan 2020", date(2020, 1, 1)),
            ("September, 2017", date(2017, 9, 1)),
            ("Sept. 2017", date(2017, 9, 1)),
        ],
    )
    def test_parses_common_shapes(self, value, expected):
        assert normalize_date(value) == expected

    @pytest.mark.parametrize("value", ["Summer 2020", "13/2019", "sometime", ""])
    def test_unreadable_values_pass_through(self, value):
        assert normalize_date(value) == value

    def test_non_strings_pass_through(self):
        assert normalize_date(None) is None
        assert normalize_date(2020) == 2020
        assert normalize_date(datetime(2020, 5, 4, 12, 0)) == date(2020, 5, 4)

    @pytest.mark.parametrize("value", ["Jan 2020", "present", "03/2019", "Never", "garbage", "2018"])
    def test_idempotent(self, value):
        once = normalize_date(value)
        assert normalize_date(once) == once
