"""
Lending system container and error mapping shared by the routers
"""

from fastapi import HTTPException

from ..config import get_config
from ..engine import LendingEngine
from ..exceptions import NotFoundError, TransientStorageError
from ..logging_config import setup_logging


class LendingSystem:
    """Lending engine wired from configuration"""

    def __init__(self, engine: LendingEngine = None):
        self.config = get_config()
        self.engine = engine or LendingEngine.from_config(self.config)


def http_error(error: Exception) -> HTTPException:
    """Translate an engine exception into an HTTP error"""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, TransientStorageError):
        return HTTPException(status_code=503, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))


_config = get_config()
setup_logging(
    level=_config.log_level,
    log_format=_config.log_format,
    log_file=_config.log_file
)

# Global lending system instance
lending_system = LendingSystem()


# Dependency to get lending system
def get_lending_system() -> LendingSystem:
    return lending_system
