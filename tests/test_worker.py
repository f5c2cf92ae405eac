import unittest

try:
    from PySide6.QtCore import QCoreApplication

    from watersort_engine import PuzzleParams
    from watersort_telemetry import NullTelemetrySink
    from watersort_worker import SolverWorker

    HAS_QT = True
except Exception:
    HAS_QT = False


PUZZLE = (("R", "B"), ("B", "R"), ())


@unittest.skipUnless(HAS_QT, "PySide6 is required for worker integration tests")
class TestSolverWorker(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.app = QCoreApplication.instance() or QCoreApplication([])

    def setUp(self) -> None:
        self.params = PuzzleParams(tube_height=2)
        self.worker = SolverWorker(slice_states=1, telemetry_sink=NullTelemetrySink())
        self.results = []
        self.progress = []
        self.failures = []
        self.worker.result_ready.connect(lambda rid, result: self.results.append((rid, result)))
        self.worker.progress.connect(lambda rid, snap: self.progress.append((rid, snap)))
        self.worker.solve_failed.connect(lambda rid, message: self.failures.append((rid, message)))

    def tearDown(self) -> None:
        self.worker.close()

    def test_solve_delivers_result_without_blocking(self) -> None:
        self.worker.set_latest_request_id(1)
        self.worker.solve(self.params, PUZZLE, 1)
        self.assertTrue(self.worker.is_busy())
        self.assertEqual(self.worker.active_request_id, 1)
        self.assertEqual(self.results, [])

        self.assertTrue(self.worker.wait_for_idle(5000))
        self.assertEqual(len(self.results), 1)
        request_id, result = self.results[0]
        self.assertEqual(request_id, 1)
        self.assertEqual(result.moves, [(0, 2), (1, 0), (1, 2)])
        self.assertTrue(self.progress)
        self.assertTrue(all(snap.reason == "running" for _, snap in self.progress))
        self.assertIsNone(self.worker.active_request_id)

    def test_check_reports_solvability(self) -> None:
        self.worker.set_latest_request_id(3)
        self.worker.check(self.params, PUZZLE, 3)
        self.assertTrue(self.worker.wait_for_idle(5000))
        _, result = self.results[0]
        self.assertTrue(result.solvable)
        self.assertIsNone(result.moves)

    def test_stale_request_is_ignored(self) -> None:
        self.worker.set_latest_request_id(2)
        self.worker.solve(self.params, PUZZLE, 1)
        self.assertFalse(self.worker.is_busy())
        self.assertTrue(self.worker.wait_for_idle(100))
        self.assertEqual(self.results, [])

    def test_newer_request_cancels_active_search(self) -> None:
        self.worker.set_latest_request_id(1)
        self.worker.solve(self.params, PUZZLE, 1)
        self.worker.set_latest_request_id(2)
        self.assertFalse(self.worker.is_busy())
        self.app.processEvents()
        self.assertEqual(self.results, [])

        self.worker.solve(self.params, PUZZLE, 2)
        self.assertTrue(self.worker.wait_for_idle(5000))
        self.assertEqual([rid for rid, _ in self.results], [2])

    def test_invalid_configuration_reports_failure(self) -> None:
        self.worker.set_latest_request_id(1)
        self.worker.solve(self.params, (("R", "R", "R"),), 1)
        self.assertFalse(self.worker.is_busy())
        self.assertEqual(len(self.failures), 1)
        self.assertEqual(self.failures[0][0], 1)
        self.assertIn("InvalidConfiguration", self.failures[0][1])

    def test_closed_worker_rejects_requests(self) -> None:
        self.worker.close()
        self.worker.solve(self.params, PUZZLE, 0)
        self.assertEqual(self.failures, [(0, "Solver worker is closed")])


if __name__ == "__main__":
    unittest.main()
