import logging

import pytest

from txrun.process import ProcessRunner


@pytest.fixture(autouse=True)
def reset_txrun_logger():
    """Drop handlers installed by CLI runs so tests stay independent."""
    yield
    logger = logging.getLogger("txrun")
    for handler in logger.handlers:
        handler.close()
    logger.handlers = []
    logger.setLevel(logging.NOTSET)


@pytest.fixture
def runner():
    return ProcessRunner(logger=logging.getLogger("txrun.test"))


@pytest.fixture
def tx_dirs():
    """Lists transaction directories currently present in a directory."""
    def _tx_dirs(directory):
        return [p for p in directory.iterdir() if p.is_dir() and p.name.startswith("txtmp")]
    return _tx_dirs
