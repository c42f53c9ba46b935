import json
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path


SCRIPT_DIR = Path(__file__).resolve().parent
SCRIPT_PATH = SCRIPT_DIR / "cargo_lock_hash.py"
FIXTURE_LOCK = SCRIPT_DIR / "testdata" / "cargo-lock" / "Cargo.lock"
sys.path.insert(0, str(SCRIPT_DIR))

import cargo_lock_hash  # noqa: E402


# awk '{if(prev!="name = \"laim\""&&$0!~/^version = /){print};prev=$0}' Cargo.lock | sha256sum
FIXTURE_AWK_SHA256 = "64ad9e08f0cdca1ab9960704b66a2ab54f6387766d6e9730448f89e9f9ff0efb"
EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


def fixture_text() -> str:
    return FIXTURE_LOCK.read_bytes().decode("utf-8")


class CargoLockHashTests(unittest.TestCase):
    def test_unit_filter_drops_version_lines_and_line_after_tracked_name(self):
        lines = [
            'name = "serde"',
            'version = "1.0.0"',
            'name = "laim"',
            'source = "path"',
            'checksum = "abc"',
        ]
        kept = cargo_lock_hash.filter_lock_lines(lines, "laim")
        self.assertEqual(kept, ['name = "serde"', 'name = "laim"', 'checksum = "abc"'])

    def test_unit_filter_tracks_previous_line_even_when_it_was_dropped(self):
        lines = ['name = "laim"', 'version = "0.1.0"', 'dependencies = [']
        kept = cargo_lock_hash.filter_lock_lines(lines, "laim")
        self.assertEqual(kept, ['name = "laim"', "dependencies = ["])

    def test_unit_fingerprint_matches_awk_pipeline_for_fixture(self):
        self.assertEqual(cargo_lock_hash.lock_fingerprint(fixture_text()), FIXTURE_AWK_SHA256)

    def test_unit_missing_trailing_newline_hashes_like_awk(self):
        self.assertEqual(
            cargo_lock_hash.lock_fingerprint("a\nb"),
            cargo_lock_hash.lock_fingerprint("a\nb\n"),
        )
        self.assertEqual(cargo_lock_hash.lock_fingerprint(""), EMPTY_SHA256)

    def test_unit_tracked_package_version_bump_keeps_fingerprint(self):
        bumped = fixture_text().replace('version = "0.3.1"', 'version = "0.4.0"')
        self.assertNotEqual(bumped, fixture_text())
        self.assertEqual(cargo_lock_hash.lock_fingerprint(bumped), FIXTURE_AWK_SHA256)

    def test_unit_other_dependency_changes_alter_fingerprint(self):
        original = fixture_text()
        changed_checksum = original.replace(
            "784e0ac535deb450455cbfa28a6f0df145ea1bb7ae51b821cf5e7927fdcfbdd0",
            "0000000000000000000000000000000000000000000000000000000000000000",
        )
        added_dependency = original.replace(' "tracing",\n]', ' "tracing",\n "wasm-bindgen",\n]')
        renamed_package = original.replace('name = "cfg-if"', 'name = "cfg_if"')
        for variant in (changed_checksum, added_dependency, renamed_package):
            self.assertNotEqual(variant, original)
            self.assertNotEqual(cargo_lock_hash.lock_fingerprint(variant), FIXTURE_AWK_SHA256)

    def test_unit_fingerprint_depends_on_tracked_package_name(self):
        text = 'name = "laim"\nsource = "path"\n'
        self.assertNotEqual(
            cargo_lock_hash.lock_fingerprint(text, "laim"),
            cargo_lock_hash.lock_fingerprint(text, "other"),
        )

    def test_unit_cache_key_prefixes_runner_os(self):
        self.assertEqual(cargo_lock_hash.cache_key("Linux", "abc"), "Linux-cargo-abc")
        with self.assertRaises(ValueError):
            cargo_lock_hash.cache_key(" ", "abc")

    def test_unit_build_fingerprint_counts_kept_lines(self):
        result = cargo_lock_hash.build_fingerprint(FIXTURE_LOCK, "laim", "Linux")
        self.assertEqual(result.total_lines, 34)
        self.assertEqual(result.kept_lines, 29)
        self.assertEqual(result.cache_key, f"Linux-cargo-{FIXTURE_AWK_SHA256}")

    def test_functional_cli_writes_github_output_and_summary(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            root = Path(temp_dir)
            output_path = root / "gh-output.txt"
            summary_path = root / "summary.md"
            completed = subprocess.run(
                [
                    sys.executable,
                    str(SCRIPT_PATH),
                    "--lock-file",
                    str(FIXTURE_LOCK),
                    "--runner-os",
                    "Linux",
                    "--output",
                    str(output_path),
                    "--summary",
                    str(summary_path),
                ],
                text=True,
                capture_output=True,
                check=False,
            )
            self.assertEqual(completed.returncode, 0, msg=completed.stderr)
            self.assertEqual(completed.stdout.strip(), FIXTURE_AWK_SHA256)
            output = output_path.read_text(encoding="utf-8")
            self.assertIn(f"hash={FIXTURE_AWK_SHA256}", output)
            self.assertIn(f"cache_key=Linux-cargo-{FIXTURE_AWK_SHA256}", output)
            summary = summary_path.read_text(encoding="utf-8")
            self.assertIn("### Cargo.lock Cache Key", summary)
            self.assertIn("- Lines hashed: 29/34", summary)

    def test_functional_cli_json_output(self):
        completed = subprocess.run(
            [sys.executable, str(SCRIPT_PATH), "--lock-file", str(FIXTURE_LOCK), "--json"],
            text=True,
            capture_output=True,
            check=False,
        )
        self.assertEqual(completed.returncode, 0, msg=completed.stderr)
        payload = json.loads(completed.stdout)
        self.assertEqual(payload["package"], "laim")
        self.assertEqual(payload["hash"], FIXTURE_AWK_SHA256)

    def test_regression_cli_fails_for_missing_lock_file(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            completed = subprocess.run(
                [
                    sys.executable,
                    str(SCRIPT_PATH),
                    "--lock-file",
                    str(Path(temp_dir) / "Cargo.lock"),
                ],
                text=True,
                capture_output=True,
                check=False,
            )
            self.assertNotEqual(completed.returncode, 0)
            self.assertIn("lock file not found", completed.stderr)

    def test_regression_crlf_lines_are_hashed_verbatim(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            lock_path = Path(temp_dir) / "Cargo.lock"
            lock_path.write_bytes(b'name = "serde"\r\nsource = "registry"\r\n')
            self.assertNotEqual(
                cargo_lock_hash.lock_file_fingerprint(lock_path),
                cargo_lock_hash.lock_fingerprint('name = "serde"\nsource = "registry"\n'),
            )

    def test_regression_non_utf8_bytes_are_hashed_like_awk(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            lock_path = Path(temp_dir) / "Cargo.lock"
            lock_path.write_bytes(b'# caf\xe9\nname = "serde"\nversion = "1.0.0"\n')
            self.assertEqual(
                cargo_lock_hash.lock_file_fingerprint(lock_path),
                "2a7e44b8f8b6de7b3f730e4bc4c1f5392baaeb6d60b161d35fc365b1822a492f",
            )
            result = cargo_lock_hash.build_fingerprint(lock_path, "laim", "Linux")
            self.assertEqual(result.kept_lines, 2)


if __name__ == "__main__":
    unittest.main()
