import logging

logging.captureWarnings(True)

LOGGER = logging.getLogger("zinbwave")
handler = logging.StreamHandler()
formatter = logging.Formatter("[%(levelname)s] %(message)s")
handler.setFormatter(formatter)
LOGGER.handlers.clear()
LOGGER.addHandler(handler)


def progress(verbose, msg):
    """log a progress message, at INFO level if :code:`verbose` else at DEBUG level"""
    if verbose:
        if LOGGER.isEnabledFor(logging.INFO):
            LOGGER.info(msg)
            return
        # raise the level for this message only
        level = LOGGER.level
        LOGGER.setLevel(logging.INFO)
        try:
            LOGGER.info(msg)
        finally:
            LOGGER.setLevel(level)
    else:
        LOGGER.debug(msg)
