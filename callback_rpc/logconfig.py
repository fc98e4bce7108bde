import logging
import sys

from colorama import init, Fore, Style

from callback_rpc.config import config


def convert_level(level: str | int) -> int:
    """ Привести уровень логирования к числовому значению """
    if isinstance(level, str):
        level = level.strip().upper()  # dEbUG -> DEBUG
    return logging.getLevelName(level)


class RootLogger:
    """ Логгеры поверх корневого регистра с базовым форматом """

    def __init__(self):
        logging.basicConfig(
            level=convert_level(config.log_level),
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=[logging.StreamHandler()]
        )

    @staticmethod
    def setup_logger(name: str, level: str | int = config.log_level) -> logging.Logger:
        logger = logging.getLogger(name)
        logger.setLevel(convert_level(level))
        return logger


class ColorFormatter(logging.Formatter):
    """ Форматтер, окрашивающий только уровень записи """

    LEVEL_COLORS = {
        "DEBUG": Fore.CYAN,
        "INFO": Fore.GREEN,
        "WARNING": Fore.YELLOW,
        "ERROR": Fore.RED,
        "CRITICAL": Fore.RED + Style.BRIGHT,
    }

    # По самому длинному уровню, "CRITICAL"
    LEVEL_WIDTH = 8
    NAME_WIDTH = 20

    def format(self, record: logging.LogRecord) -> str:
        levelname, name = record.levelname, record.name
        original_name = name

        if len(name) > self.NAME_WIDTH:
            name = name[: self.NAME_WIDTH - 3] + "..."

        record.levelname = (
            self.LEVEL_COLORS.get(levelname, "")
            + levelname.ljust(self.LEVEL_WIDTH)
            + Style.RESET_ALL
        )
        record.name = name.center(self.NAME_WIDTH)
        try:
            return super().format(record)
        finally:
            record.levelname, record.name = levelname, original_name


class CustomLogger:
    """ Логгеры с цветным выводом в stdout """

    def __init__(self):
        init()  # colorama для кроссплатформенных цветов

    @staticmethod
    def setup_logger(name: str = None, level: str | int = config.log_level) -> logging.Logger:
        logger = logging.getLogger(name)
        logger.setLevel(convert_level(level))
        logger.handlers.clear()
        logger.propagate = False

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(convert_level(level))
        console_handler.setFormatter(ColorFormatter(
            fmt="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(console_handler)

        return logger


opt_logger = RootLogger() if config.debug else CustomLogger()
