import logging


def setup_logging(level: int | str = "INFO") -> None:
    """
    Применяет минимальную настройку логирования один раз.
    Если у корневого логгера уже есть обработчики (uvicorn, pytest), ничего не делает.
    """

    if isinstance(level, str):
        lvl = getattr(logging, level.upper(), logging.INFO)
    else:
        lvl = int(level)

    root = logging.getLogger()
    if root.handlers:
        return

    logging.basicConfig(
        level=lvl,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
