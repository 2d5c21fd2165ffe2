import logging

from synergy_delivery.logging_config import QUIET_LOGGERS, setup_logging


def test_setup_logging_creates_log_directory_and_quiets_libraries(tmp_path):
    log_file = tmp_path / "logs" / "delivery.log"

    setup_logging("DEBUG", str(log_file))

    assert log_file.parent.is_dir()
    for name in QUIET_LOGGERS:
        assert logging.getLogger(name).level == logging.WARNING
