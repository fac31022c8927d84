"""L1 Unit Tests: setup_logging."""

import logging

from mnemo import logging_setup


def test_file_handler_and_single_configuration(tmp_path, monkeypatch):
    monkeypatch.setattr(logging_setup, "_configured", False)
    root = logging.getLogger("mnemo")
    before = list(root.handlers)
    level = root.level

    try:
        logging_setup.setup_logging("DEBUG", tmp_path / "logs")
        logging_setup.setup_logging("DEBUG", tmp_path / "other")

        added = [h for h in root.handlers if h not in before]
        assert len(added) == 2
        assert (tmp_path / "logs" / logging_setup.LOG_FILE_NAME).exists()
        assert not (tmp_path / "other").exists()
        assert root.level == logging.DEBUG
    finally:
        for h in list(root.handlers):
            if h not in before:
                root.removeHandler(h)
                h.close()
        root.setLevel(level)
