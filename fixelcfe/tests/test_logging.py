import logging
import tempfile
import threading
from pathlib import Path

from fixelcfe.utils.logging import ProgressCounter, setup_logging, timer

# Outside the package logger, which setup_logging stops from propagating
LOGGER_NAME = "progress_counter_test"


def test_progress_counter_is_thread_safe(caplog):
    logger = logging.getLogger(LOGGER_NAME)
    progress = ProgressCounter(logger, "Processed streamlines", interval=100, total=4000)

    def work():
        for _ in range(1000):
            progress.increment()

    with caplog.at_level(logging.INFO, logger=LOGGER_NAME):
        threads = [threading.Thread(target=work) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

    assert progress.count == 4000
    messages = [record.getMessage() for record in caplog.records]
    assert len(messages) == 40
    assert "  Processed streamlines: 4000/4000" in messages


def test_progress_counter_batches_and_silence(caplog):
    logger = logging.getLogger(LOGGER_NAME)
    with caplog.at_level(logging.INFO, logger=LOGGER_NAME):
        batches = ProgressCounter(logger, "Completed permutations", interval=1000)
        for _ in range(25):
            batches.increment(100)
        silent = ProgressCounter(logger, "Read streamlines", interval=0)
        assert silent.increment(5) == 5

    messages = [record.getMessage() for record in caplog.records]
    assert messages == ["  Completed permutations: 1000", "  Completed permutations: 2000"]


def test_setup_logging_writes_file():
    with tempfile.TemporaryDirectory() as temp_dir:
        log_file = Path(temp_dir) / "fixelcfe.log"
        logger = setup_logging(verbose=True, log_file=str(log_file))
        with timer(logger, "Computing fixel-fixel connectivity"):
            pass
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)

        content = log_file.read_text()
        assert "Starting: Computing fixel-fixel connectivity" in content
        assert "MainThread" in content
        assert logger.level == logging.DEBUG
