import logging

NOISY_LOGGERS = ("urllib3", "charset_normalizer")


def setup_logging(debug: bool = False) -> None:
    """Configure basic logging for the dashboard backend."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    # The charger listing is one large response; keep transport chatter quiet
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if debug else logging.WARNING)
