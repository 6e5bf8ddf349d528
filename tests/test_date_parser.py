import unittest

from cakeday.date_parser import parse_event_date
from cakeday.models import SENTINEL_YEAR, ParsedDate


class DateParserTests(unittest.TestCase):
    def test_iso_dates_keep_literal_fields(self) -> None:
        for raw, expected in [
            ("1990-01-15", (1990, 1, 15)),
            ("2000-02-29", (2000, 2, 29)),
            ("1815-12-10", (1815, 12, 10)),
            ("1985-7-4", (1985, 7, 4)),
        ]:
            parsed = parse_event_date(raw, prefer_day_before_month=False)
            self.assertEqual(parsed, ParsedDate(*expected, year_known=True), raw)

    def test_iso_date_with_time_suffix(self) -> None:
        parsed = parse_event_date("1990-01-15T00:00:00Z")
        self.assertEqual(parsed, ParsedDate(1990, 1, 15, year_known=True))

    def test_yearless_dash_format_uses_sentinel(self) -> None:
        parsed = parse_event_date("--03-15", prefer_day_before_month=False)
        self.assertIsNotNone(parsed)
        self.assertFalse(parsed.year_known)
        self.assertEqual((parsed.year, parsed.month, parsed.day), (SENTINEL_YEAR, 3, 15))

    def test_yearless_leap_day(self) -> None:
        parsed = parse_event_date("--02-29")
        self.assertEqual(parsed, ParsedDate(SENTINEL_YEAR, 2, 29, year_known=False))

    def test_compact_format(self) -> None:
        self.assertEqual(parse_event_date("19900115"), ParsedDate(1990, 1, 15, year_known=True))

    def test_unix_millis(self) -> None:
        self.assertEqual(parse_event_date("946684800000"), ParsedDate(2000, 1, 1, year_known=True))
        self.assertEqual(parse_event_date("0"), ParsedDate(1970, 1, 1, year_known=True))

    def test_dotted_formats(self) -> None:
        self.assertEqual(parse_event_date("15.01.1990"), ParsedDate(1990, 1, 15, year_known=True))
        self.assertEqual(parse_event_date("1990.01.15"), ParsedDate(1990, 1, 15, year_known=True))

    def test_month_first_slash_formats(self) -> None:
        self.assertEqual(parse_event_date("01/15/1990"), ParsedDate(1990, 1, 15, year_known=True))
        self.assertEqual(
            parse_event_date("02/29", prefer_day_before_month=False),
            ParsedDate(SENTINEL_YEAR, 2, 29, year_known=False),
        )
        self.assertIsNone(parse_event_date("15/01/1990", prefer_day_before_month=False))

    def test_day_first_slash_formats(self) -> None:
        self.assertEqual(
            parse_event_date("15/01/1990", prefer_day_before_month=True),
            ParsedDate(1990, 1, 15, year_known=True),
        )
        self.assertEqual(
            parse_event_date("29/02", prefer_day_before_month=True),
            ParsedDate(SENTINEL_YEAR, 2, 29, year_known=False),
        )
        self.assertIsNone(parse_event_date("02/29", prefer_day_before_month=True))

    def test_ambiguous_slash_date_follows_preference(self) -> None:
        self.assertEqual(parse_event_date("03/04/2001", prefer_day_before_month=False).month, 3)
        self.assertEqual(parse_event_date("03/04/2001", prefer_day_before_month=True).month, 4)

    def test_unparseable_inputs_return_none(self) -> None:
        for raw in [None, "", "   ", "tomorrow", "1990-02-30", "--13-01", "32.01.1990"]:
            self.assertIsNone(parse_event_date(raw), raw)


if __name__ == "__main__":
    unittest.main()
