import unittest

from deeptrace.redaction import redact, truncate_string


class RedactionTests(unittest.TestCase):
    def test_long_strings_are_truncated_with_dropped_size(self) -> None:
        self.assertEqual(truncate_string("abcdefghij", 4), "abcd…[truncated 6 chars]")
        self.assertEqual(truncate_string("abc", 4), "abc")

    def test_nested_structures_are_walked_uniformly(self) -> None:
        value = {
            "a": "x" * 10,
            "b": ["y" * 10, {"c": "z" * 3, "n": 5, "flag": True, "none": None}],
        }

        out = redact(value, max_length=4)

        self.assertEqual(out["a"], "xxxx…[truncated 6 chars]")
        self.assertEqual(out["b"][0], "yyyy…[truncated 6 chars]")
        self.assertEqual(out["b"][1], {"c": "zzz", "n": 5, "flag": True, "none": None})

    def test_truncation_is_idempotent(self) -> None:
        samples = [
            "q" * 50,
            ["a" * 9, {"deep": ["b" * 30, {"deeper": "c" * 7}]}],
            {"k": {"k": {"k": {"k": "v" * 100}}}},
            "short",
        ]
        for sample in samples:
            once = redact(sample, max_length=8, max_depth=3)
            self.assertEqual(redact(once, max_length=8, max_depth=3), once)

    def test_depth_cap_serializes_deep_subtrees(self) -> None:
        out = redact({"a": {"b": {"c": "d"}}}, max_length=100, max_depth=2)
        self.assertEqual(out, {"a": {"b": '{"c": "d"}'}})

    def test_input_is_not_mutated(self) -> None:
        value = {"a": "x" * 10}
        redact(value, max_length=4)
        self.assertEqual(value["a"], "x" * 10)


if __name__ == "__main__":
    unittest.main()
