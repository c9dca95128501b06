import logging

logger = logging.getLogger(__name__)


class Navigator:
    """Records where the app was sent; stands in for the browser router."""

    def __init__(self, current_path: str = "/") -> None:
        self.current_path = current_path
        self.history: list[str] = [current_path]
        self.refreshes = 0

    def push(self, path: str) -> None:
        logger.info("navigate %s -> %s", self.current_path, path)
        self.current_path = path
        self.history.append(path)

    def refresh(self) -> None:
        self.refreshes += 1
