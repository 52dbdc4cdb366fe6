import unittest
from datetime import timedelta

from src.common import annotations as ann


class AnnotationResolverTests(unittest.TestCase):
    def test_absent_keys_resolve_to_defaults(self) -> None:
        empty: dict = {}
        self.assertEqual(ann.get_string(empty, ann.KEY_LOG_LEVEL, "info"), "info")
        self.assertEqual(ann.get_int(empty, ann.KEY_METRICS_PORT, 9090), 9090)
        self.assertTrue(ann.get_bool(empty, ann.KEY_ENABLE_METRICS, True))
        self.assertFalse(ann.get_bool(empty, ann.KEY_LOG_AS_JSON))
        self.assertEqual(ann.get_duration(empty, ann.KEY_GRACEFUL_SHUTDOWN_SECONDS, timedelta(seconds=7)), timedelta(seconds=7))
        self.assertEqual(ann.get_list(empty, ann.KEY_VOLUME_MOUNTS_READ_ONLY), [])
        self.assertEqual(ann.get_pairs(empty, ann.KEY_VOLUME_MOUNTS_READ_WRITE), [])

    def test_present_empty_string_is_kept(self) -> None:
        annotations = {ann.KEY_PLACEMENT_ADDRESSES: ""}
        self.assertEqual(ann.get_string(annotations, ann.KEY_PLACEMENT_ADDRESSES, "placement:50000"), "")

    def test_malformed_int_falls_back(self) -> None:
        annotations = {ann.KEY_METRICS_PORT: "ninety"}
        with self.assertLogs("src.common.annotations", level="WARNING"):
            self.assertEqual(ann.get_int(annotations, ann.KEY_METRICS_PORT, 9090), 9090)
        self.assertEqual(ann.get_int({ann.KEY_METRICS_PORT: " 9876 "}, ann.KEY_METRICS_PORT, 9090), 9876)

    def test_int_accepts_only_plain_ascii_digits(self) -> None:
        self.assertEqual(ann.get_int({ann.KEY_DEBUG_PORT: "-12"}, ann.KEY_DEBUG_PORT, 40000), -12)
        for bad in ("1_000", "٣٠٠٠", "0x10", "1e3", ""):
            with self.assertLogs("src.common.annotations", level="WARNING"):
                self.assertEqual(ann.get_int({ann.KEY_DEBUG_PORT: bad}, ann.KEY_DEBUG_PORT, 40000), 40000)
        with self.assertRaises(ValueError):
            ann.parse_duration("٥s")

    def test_blank_value_uses_default_for_non_empty_lookup(self) -> None:
        self.assertEqual(ann.get_non_empty_string({ann.KEY_LOG_LEVEL: " "}, ann.KEY_LOG_LEVEL, "info"), "info")
        self.assertEqual(ann.get_non_empty_string({}, ann.KEY_LOG_LEVEL, "info"), "info")
        self.assertEqual(ann.get_non_empty_string({ann.KEY_LOG_LEVEL: "debug"}, ann.KEY_LOG_LEVEL, "info"), "debug")

    def test_bool_requires_literal_true(self) -> None:
        self.assertTrue(ann.get_bool({ann.KEY_LOG_AS_JSON: "true"}, ann.KEY_LOG_AS_JSON))
        self.assertFalse(ann.get_bool({ann.KEY_LOG_AS_JSON: "false"}, ann.KEY_LOG_AS_JSON))
        self.assertFalse(ann.get_bool({ann.KEY_LOG_AS_JSON: "yes"}, ann.KEY_LOG_AS_JSON))
        # A present key overrides a true default.
        self.assertFalse(ann.get_bool({ann.KEY_ENABLE_METRICS: "nope"}, ann.KEY_ENABLE_METRICS, True))

    def test_parse_duration_forms(self) -> None:
        self.assertEqual(ann.parse_duration("5"), timedelta(seconds=5))
        self.assertEqual(ann.parse_duration("1m30s"), timedelta(seconds=90))
        self.assertEqual(ann.parse_duration("250ms"), timedelta(milliseconds=250))
        self.assertEqual(ann.parse_duration("-2s"), timedelta(seconds=-2))
        for bad in ("", "invalid", "5x", "s", "1m 30s"):
            with self.assertRaises(ValueError):
                ann.parse_duration(bad)

    def test_malformed_duration_falls_back(self) -> None:
        annotations = {"dapr.io/timeout": "soon"}
        self.assertEqual(ann.get_duration(annotations, "dapr.io/timeout", timedelta(seconds=3)), timedelta(seconds=3))

    def test_list_and_pairs(self) -> None:
        annotations = {
            ann.KEY_LISTEN_ADDRESSES: " 1.2.3.4, ,::1 ",
            ann.KEY_VOLUME_MOUNTS_READ_ONLY: "mount1:/tmp/mount1,broken,:/nameless,mount2:/tmp/a:b",
        }
        self.assertEqual(ann.get_list(annotations, ann.KEY_LISTEN_ADDRESSES), ["1.2.3.4", "::1"])
        self.assertEqual(
            ann.get_pairs(annotations, ann.KEY_VOLUME_MOUNTS_READ_ONLY),
            [("mount1", "/tmp/mount1"), ("mount2", "/tmp/a:b")],
        )
        self.assertEqual(ann.split_pairs("A=1,B=x=y", "="), [("A", "1"), ("B", "x=y")])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
