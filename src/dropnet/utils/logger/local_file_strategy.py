from .log_storage_strategy import LogStorageStrategy
import os
from datetime import datetime


class LocalFileStrategy(LogStorageStrategy):
    """
    Writes simulator logs to a local text file.
    """

    # INITIALIZE LOG STORAGE STRATEGY
    def __init__(self, file_location, truncate=True):
        """
        Args:
            file_location (str): Path of the log file, relative paths resolve against cwd.
            truncate (bool): Start from an empty file instead of appending to an old run.
        """
        self.file_location = self.resolve_file_path(file_location)
        if truncate or not os.path.exists(self.file_location):
            self.flush_logs()

    # RESOLVE FILE PATH TO ABSOLUTE AND CREATE DIRECTORIES IF NEEDED
    def resolve_file_path(self, file_location):
        if not os.path.isabs(file_location):
            file_location = os.path.join(os.getcwd(), file_location)

        dir_name = os.path.dirname(file_location)
        if dir_name:
            os.makedirs(dir_name, exist_ok=True)

        return file_location

    # STORE A LOG ENTRY IN THE FILE
    def store_log(self, message, priority, timestamp):
        with open(self.file_location, 'a') as log_file:
            log_file.write(f"[{timestamp}] [{priority}] {message}\n")

    # CLEAR ALL LOG ENTRIES FROM THE FILE
    def flush_logs(self):
        with open(self.file_location, 'w') as log_file:
            log_file.write(f"DROPNET LOG STARTED: {datetime.now()}\n")
