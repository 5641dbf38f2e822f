import logging

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str = "INFO") -> None:
    root = logging.getLogger()
    resolved_level = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved_level, int):
        resolved_level = logging.INFO

    if not any(getattr(handler, "_genbill_handler", False) for handler in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._genbill_handler = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    root.setLevel(resolved_level)
    logging.getLogger("genbill").setLevel(resolved_level)
    # paho logs every reconnect attempt at info
    logging.getLogger("paho").setLevel(max(resolved_level, logging.WARNING))
