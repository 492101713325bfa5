import tempfile
import unittest
from pathlib import Path

from cool_kit.errors import CommandFailedError, ExecutorConnectionError
from cool_kit.local import LocalSession


class LocalSessionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.session = LocalSession(self.tmp.name)

    def test_run_captures_output_and_status(self) -> None:
        result = self.session.run("echo hello; echo oops >&2; exit 3")
        self.assertEqual(result.stdout, "hello")
        self.assertEqual(result.stderr, "oops")
        self.assertEqual(result.exit_status, 3)
        self.assertFalse(result.ok)

    def test_commands_run_in_working_dir(self) -> None:
        self.assertEqual(self.session.execute("pwd -P"), str(Path(self.tmp.name).resolve()))

    def test_execute_raises_on_failure(self) -> None:
        with self.assertRaises(CommandFailedError):
            self.session.execute("false")

    def test_timeout_yields_exit_status_minus_one(self) -> None:
        result = self.session.run("sleep 5", timeout=1)
        self.assertEqual(result.exit_status, -1)

    def test_missing_shell_is_a_connection_error(self) -> None:
        sleeps = []
        session = LocalSession(self.tmp.name, shell="/nonexistent/shell", sleep=sleeps.append)
        with self.assertRaises(ExecutorConnectionError):
            session.execute_with_retry("true", max_attempts=2, delay=1)
        self.assertEqual(sleeps, [1])

    def test_copy_content_creates_parent_directories(self) -> None:
        self.session.copy_content("services: {}\n", "stack/docker-compose.yml")
        written = Path(self.tmp.name) / "stack" / "docker-compose.yml"
        self.assertEqual(written.read_text(encoding="utf-8"), "services: {}\n")


if __name__ == "__main__":
    unittest.main()
