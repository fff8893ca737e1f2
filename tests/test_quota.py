import unittest
from unittest import mock

from agentwatch.quota import QuotaError, fetch_quota, parse_quota

MODELS_OUTPUT = (
    "\x1b[1mModel\x1b[0m           \x1b[32mUsage\x1b[0m\n"
    "gemini-3-pro-low \x1b[32m80%\x1b[0m left ⏱3h 44m\n"
    "claude-sonnet-4   5% left\n"
    "usage: 50% left\n"
    "gpt 99% left\n"
    "longprovidername 12% left\n"
)


class ParseQuotaTest(unittest.TestCase):
    def test_parses_and_filters_noise(self) -> None:
        self.assertEqual(
            parse_quota(MODELS_OUTPUT),
            {"gemini-3-pro-low": 80, "claude-sonnet-4": 5, "longprovidername": 12},
        )

    def test_configured_but_unmeasured_models_get_sentinel(self) -> None:
        models = parse_quota("claude-sonnet-4 5% left", ["claude-sonnet-4", "gemini-flash"])
        self.assertEqual(models, {"claude-sonnet-4": 5, "gemini-flash": -1})

    def test_empty_output(self) -> None:
        self.assertEqual(parse_quota(""), {})


class FetchQuotaTest(unittest.TestCase):
    def test_missing_binary_raises_quota_error(self) -> None:
        with mock.patch("agentwatch.quota.subprocess.run", side_effect=FileNotFoundError("openclaw")):
            with self.assertRaises(QuotaError):
                fetch_quota("openclaw models")

    def test_non_zero_exit_raises_quota_error(self) -> None:
        completed = mock.Mock(returncode=1, stdout="", stderr="not logged in")
        with mock.patch("agentwatch.quota.subprocess.run", return_value=completed):
            with self.assertRaisesRegex(QuotaError, "not logged in"):
                fetch_quota("openclaw models")

    def test_returns_combined_output(self) -> None:
        completed = mock.Mock(returncode=0, stdout="gemini-pro 1% left\n", stderr="warn\n")
        with mock.patch("agentwatch.quota.subprocess.run", return_value=completed) as run:
            self.assertEqual(fetch_quota("openclaw models"), "gemini-pro 1% left\nwarn\n")
            self.assertEqual(run.call_args.args[0], ["openclaw", "models"])


if __name__ == "__main__":
    unittest.main()
