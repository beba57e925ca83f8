import logging

FORMAT = "%(asctime)s %(levelname)s [%(tool)s] %(message)s"


class ToolNameFilter(logging.Filter):
    def __init__(self, tool_name: str):
        super().__init__()
        self.tool_name = tool_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.tool = self.tool_name
        return True


def setup_logger(tool_name: str, level: int | str = logging.INFO) -> logging.Logger:
    """Configure the package logger; module loggers propagate into it."""
    root = logging.getLogger("scene_tracking")
    root.setLevel(level)

    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(FORMAT))
        handler.addFilter(ToolNameFilter(tool_name))
        root.addHandler(handler)

    return logging.getLogger(f"scene_tracking.{tool_name}")


def add_file_handler(logger: logging.Logger, tool_name: str, log_path: str) -> None:
    handler = logging.FileHandler(log_path)
    handler.setFormatter(logging.Formatter(FORMAT))
    handler.addFilter(ToolNameFilter(tool_name))
    logger.addHandler(handler)
