import datetime
import unittest

from movierec.utils.timezone import extract_year, utc_now


class TestTimezone(unittest.TestCase):
    def test_utc_now_is_aware(self):
        now = utc_now()
        self.assertEqual(now.utcoffset(), datetime.timedelta(0))

    def test_extract_year(self):
        self.assertEqual(extract_year("2023-10-14"), 2023)
        self.assertEqual(extract_year("1999-01-01T00:00:00"), 1999)
        self.assertIsNone(extract_year(""))
        self.assertIsNone(extract_year(None))
        self.assertIsNone(extract_year("soon"))


if __name__ == "__main__":
    unittest.main()
