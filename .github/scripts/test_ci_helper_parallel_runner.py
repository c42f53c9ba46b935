import io
import json
import sys
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path


SCRIPT_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(SCRIPT_DIR))

import ci_helper_parallel_runner  # noqa: E402


PASSING_MODULE = """import unittest


class PassingTests(unittest.TestCase):
    def test_ok(self):
        self.assertTrue(True)


if __name__ == "__main__":
    unittest.main()
"""

FAILING_MODULE = """import unittest


class FailingTests(unittest.TestCase):
    def test_broken(self):
        self.assertEqual(1, 2)


if __name__ == "__main__":
    unittest.main()
"""

SLOW_MODULE = """import time

time.sleep(30)
"""


def write_file(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def run_main(argv: list[str]) -> tuple[int, str, str]:
    stdout = io.StringIO()
    stderr = io.StringIO()
    with redirect_stdout(stdout), redirect_stderr(stderr):
        code = ci_helper_parallel_runner.main(argv)
    return code, stdout.getvalue(), stderr.getvalue()


class HelperParallelRunnerTests(unittest.TestCase):
    def test_unit_discover_modules_is_sorted_and_pattern_scoped(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            write_file(root / "test_b.py", PASSING_MODULE)
            write_file(root / "test_a.py", PASSING_MODULE)
            write_file(root / "helper.py", "")
            modules = ci_helper_parallel_runner.discover_modules(root, "test_*.py")
            self.assertEqual([path.name for path in modules], ["test_a.py", "test_b.py"])

    def test_unit_discover_modules_rejects_missing_directory(self):
        with self.assertRaises(ValueError):
            ci_helper_parallel_runner.discover_modules(Path("/nonexistent-helper-dir"), "test_*.py")

    def test_functional_parallel_run_reports_failures_and_json(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            write_file(root / "tests" / "test_pass.py", PASSING_MODULE)
            write_file(root / "tests" / "test_fail.py", FAILING_MODULE)
            report_path = root / "report.json"
            code, stdout, stderr = run_main(
                [
                    "--workers",
                    "2",
                    "--start-dir",
                    str(root / "tests"),
                    "--json-report",
                    str(report_path),
                ]
            )
            self.assertEqual(code, 1)
            self.assertIn("[helper-tests] completed modules=2 failures=1 workers=2", stdout)
            self.assertIn("--- failure:", stderr)
            payload = json.loads(report_path.read_text(encoding="utf-8"))
            self.assertEqual(payload["total"], 2)
            self.assertEqual(len(payload["failed"]), 1)
            self.assertTrue(payload["failed"][0].endswith("test_fail.py"))

    def test_regression_timeout_marks_module_failed(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            module = Path(temp_dir) / "test_slow.py"
            write_file(module, SLOW_MODULE)
            result = ci_helper_parallel_runner.run_module(module, timeout_seconds=1)
            self.assertTrue(result.timed_out)
            self.assertEqual(result.return_code, ci_helper_parallel_runner.TIMEOUT_RETURN_CODE)

    def test_regression_invalid_arguments_exit_with_usage_code(self):
        code, _, stderr = run_main(["--workers", "0"])
        self.assertEqual(code, 2)
        self.assertIn("--workers must be greater than zero", stderr)
        code, _, stderr = run_main(["--timeout-seconds", "-1"])
        self.assertEqual(code, 2)


if __name__ == "__main__":
    unittest.main()
