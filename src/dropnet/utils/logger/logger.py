import threading
from datetime import datetime
from enum import Enum
import os
from .local_file_strategy import LocalFileStrategy


class Logger:
    """
    Static logger shared by every DropNet component.

    Messages below ``min_priority`` are dropped before they reach the
    storage strategy, which keeps the per-step engine trace cheap when the
    host only cares about warnings.
    """

    class LogPriority(Enum):
        DEBUG = 1
        INFO = 2
        WARNING = 3
        ERROR = 4
        CRITICAL = 5

    is_logging_enabled = True
    log_storage_strategy = None
    min_priority = LogPriority.DEBUG
    _log_lock = threading.Lock()
    _strategy_lock = threading.Lock()
    _initialize_lock = threading.Lock()

    # INITIALIZE LOGGER
    @classmethod
    def initialize(cls):
        """
        Installs the default file strategy unless a strategy is already set.
        The file location comes from DROPNET_LOG_PATH.
        """
        with cls._initialize_lock:
            if cls.log_storage_strategy is None:
                default_path = "/tmp/dropnet_logs.txt"
                file_location = os.getenv("DROPNET_LOG_PATH", default_path)
                cls.set_log_storage_strategy(LocalFileStrategy(file_location))

                cls.log(f"Logger initialized with default file storage at {file_location}.",
                        cls.LogPriority.INFO)

    # LOG WITH MESSAGE AND PRIORITY
    @classmethod
    def log(cls, message, priority=LogPriority.DEBUG):
        """
        Stores a message through the active strategy.

        Parameters:
        message (str): The log message.
        priority (LogPriority): Severity, DEBUG by default.
        """
        if priority.value < cls.min_priority.value:
            return
        with cls._log_lock:
            if cls.is_logging_enabled and cls.log_storage_strategy:
                cls.log_storage_strategy.store_log(
                    message, priority.name, datetime.now().strftime("%Y-%m-%d %H:%M:%S")
                )

    # SET LOG STORAGE STRATEGY
    @classmethod
    def set_log_storage_strategy(cls, log_storage_strategy):
        with cls._strategy_lock:
            cls.log_storage_strategy = log_storage_strategy

    @classmethod
    def set_min_priority(cls, priority):
        cls.min_priority = priority

    # FLUSH LOGS
    @classmethod
    def flush_logs(cls):
        with cls._log_lock:
            if cls.log_storage_strategy:
                cls.log_storage_strategy.flush_logs()

    # DISABLE / ENABLE LOGGING
    @classmethod
    def disable_logging(cls):
        cls.log("Logging disabled", cls.LogPriority.INFO)
        cls.is_logging_enabled = False

    @classmethod
    def enable_logging(cls):
        cls.is_logging_enabled = True
        cls.log("Logging enabled", cls.LogPriority.INFO)
