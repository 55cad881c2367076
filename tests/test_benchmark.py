import contextlib
import io
import logging
import tempfile
import unittest
from pathlib import Path

from particle_life import cli
from particle_life.params import EngineParams
from particle_life.utils import benchmark
from particle_life.utils.logger_setup import LOGGER_NAME


def _reset_logger() -> None:
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


class TestBenchmark(unittest.TestCase):
    def tearDown(self) -> None:
        _reset_logger()

    def test_time_calls(self) -> None:
        calls: list[int] = []
        mean, std = benchmark.time_calls(lambda: calls.append(1), 4)
        self.assertEqual(len(calls), 4)
        self.assertGreaterEqual(mean, 0.0)
        self.assertGreaterEqual(std, 0.0)

    def test_make_sim(self) -> None:
        sim = benchmark.make_sim(50, preset="orbital", seed=1, world=300.0)
        self.assertEqual(sim.store.get_active_count(), 50)
        self.assertEqual(sim.bounds.width, 300.0)

    def test_run_benchmark_small(self) -> None:
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            results = benchmark.run_benchmark(40, 1)
        self.assertEqual(set(results), {"quadtree", "direct", "step"})
        self.assertIn("Summary", out.getvalue())

    def test_main(self) -> None:
        with contextlib.redirect_stdout(io.StringIO()):
            self.assertEqual(benchmark.main(["-n", "30", "-i", "1"]), 0)


class TestCli(unittest.TestCase):
    def tearDown(self) -> None:
        _reset_logger()

    def test_run_headless(self) -> None:
        params = EngineParams(max_particles=40, particle_count=20, type_count=3, preset="basic_attraction").clamp()
        clock = cli.run(params, frames=10, fps=60.0)
        self.assertTrue(clock.disposed)
        self.assertGreater(clock.total_steps, 0)

    def test_main_writes_config(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            config = Path(tmp) / "in.json"
            EngineParams(max_particles=30, particle_count=10, type_count=2, log_level="ERROR").save(config)
            out = Path(tmp) / "out.json"
            code = cli.main(["--config", str(config), "--frames", "5", "--preset", "segregation", "--save-config", str(out)])
            self.assertEqual(code, 0)
            saved = EngineParams.load(out)
            _reset_logger()
        self.assertEqual(saved.preset, "segregation")
        self.assertEqual(saved.max_particles, 30)


if __name__ == "__main__":
    unittest.main()
