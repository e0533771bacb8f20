import logging
import sys
from middleware import request_id_context


class ContextualFilter(logging.Filter):
    """Stamps every record with the id of the request being served."""
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_context.get()
        return True


def setup_logging(log_level: str = "INFO", log_filename: str = "experiment_analysis.log"):
    log_filter = ContextualFilter()

    # request_id is injected by ContextualFilter
    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - [%(request_id)s] - %(name)s - %(message)s'
    )

    handlers = [
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(log_filename, mode='a'),
    ]

    for handler in handlers:
        handler.addFilter(log_filter)
        handler.setFormatter(formatter)

    # Apply the handlers to the root logger
    logging.basicConfig(level=logging.getLevelName(log_level.upper()), handlers=handlers)
