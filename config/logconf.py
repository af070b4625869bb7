import logging
import multiprocessing as mp
import os
import re
from datetime import datetime
from logging.handlers import RotatingFileHandler

from config.constants import LOG_DIR
from utils.utils import format_duration

# Color mapping for console output
LOG_COLORS = {
    "DEBUG": "\033[92m",  # Green
    "INFO": "\033[94m",  # Blue
    "WARNING": "\033[93m",  # Yellow
    "ERROR": "\033[91m",  # Red
    "CRITICAL": "\033[95m",  # Magenta
    "ELAPSED": "\033[96m",  # Cyan (right-aligned clock)
    "ENDC": "\033[0m",  # Reset
}


class TqdmToLogger:
    """
    File-like sink so tqdm progress bars end up in the log instead of stderr.
    """

    def __init__(self, logger, level=logging.INFO):
        self.logger = logger
        self.level = level

    def write(self, message):
        message = message.strip()
        if message:
            self.logger.log(self.level, message)

    def flush(self):
        pass


class ColoredFormatter(logging.Formatter):
    """
    Console formatter that colors each record by level and appends a
    right-aligned clock with the time elapsed since the formatter was created.

    The message part is padded to `width` visible characters (ANSI codes are
    stripped before measuring) so the clock lines up across records.
    """

    def __init__(self, fmt=None, datefmt=None, width=150):
        super().__init__(fmt, datefmt)
        self.start_time = datetime.now()
        self.width = width

    def format(self, record):
        elapsed = (datetime.now() - self.start_time).total_seconds()
        elapsed_str = f"{LOG_COLORS['ELAPSED']}⏱ {format_duration(elapsed)}{LOG_COLORS['ENDC']}"

        color = LOG_COLORS.get(record.levelname, LOG_COLORS["INFO"])
        time_str = f"{LOG_COLORS['DEBUG']}{self.formatTime(record)}{LOG_COLORS['ENDC']}"
        name_str = f"{LOG_COLORS['WARNING']}{record.name}{LOG_COLORS['ENDC']}"
        level_str = f"{color}{record.levelname}{LOG_COLORS['ENDC']}"
        msg_str = f"{color}{record.getMessage()}{LOG_COLORS['ENDC']}"

        raw_msg = f"{time_str} - {name_str} - {level_str} - {msg_str}"
        no_ansi_len = len(self.remove_ansi(raw_msg))
        padding = max(0, self.width - no_ansi_len)
        return f"{raw_msg}{' ' * padding}{elapsed_str}"

    @staticmethod
    def remove_ansi(s):
        ansi_escape = re.compile(r'\x1B\[[0-?]*[ -/]*[@-~]')
        return ansi_escape.sub('', s)


def setup_logger(
        name="isotk",
        log_file=None,
        level=logging.DEBUG,
        log_dir=LOG_DIR,
        rotate=True,
        max_bytes=2 * 1024 * 1024,
        backup_count=5,
        mp_file_logging="main_only",
):
    """
    Configure and return the named logger.

    The logger gets a file handler (all records at `level`) and a colored
    console handler (INFO and above). Existing handlers are replaced, so
    every module can call this at import time.

    :param name: logger name
    :param log_file: explicit log file; defaults to <log_dir>/<name>_<YYYYmmdd>.log
    :param level: threshold for the logger and its file handler
    :param log_dir: directory created on demand for the default log file
    :param rotate: size-rotating file handler instead of a plain one
    :param max_bytes: rotation size
    :param backup_count: number of rotated files kept
    :param mp_file_logging: "main_only" keeps batch workers off the log file
        (they log to the console only); "off" disables file logging
    :return: logger
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.hasHandlers():
        logger.handlers.clear()

    is_worker = mp.current_process().name != "MainProcess"
    if mp_file_logging != "off" and not is_worker:
        os.makedirs(log_dir, exist_ok=True)
        if log_file is None:
            log_file = os.path.join(log_dir, f"{name}_{datetime.now().strftime('%Y%m%d')}.log")
        if rotate:
            file_handler = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count)
        else:
            file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        file_handler.setLevel(level)
        logger.addHandler(file_handler)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(ColoredFormatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
    stream_handler.setLevel(max(level, logging.INFO))
    logger.addHandler(stream_handler)

    logger.propagate = False
    return logger
