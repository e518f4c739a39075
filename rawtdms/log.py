import logging
import time


class LogManager(object):
    """ Manages the loggers of all rawtdms modules so their level can be changed together
    """

    def __init__(self, level=logging.WARNING):
        self.log_level = level

        self.console_handler = logging.StreamHandler()
        self.console_handler.setLevel(self.log_level)

        self.formatter = logging.Formatter(
            '[%(name)s %(levelname)s] %(message)s')
        self.console_handler.setFormatter(self.formatter)

        self.loggers = {}

    def get_logger(self, module_name):
        """ Return the logger for a module, attaching the shared console handler
        """
        try:
            return self.loggers[module_name]
        except KeyError:
            pass
        log = logging.getLogger(module_name)
        log.setLevel(self.log_level)
        log.addHandler(self.console_handler)
        self.loggers[module_name] = log
        return log

    def set_level(self, level):
        """ Set the log level for every rawtdms logger created so far and any created later

        :param level: A logging level such as logging.DEBUG, or its name as a string.
        """
        if isinstance(level, str):
            level = logging.getLevelName(level.upper())
            if not isinstance(level, int):
                raise ValueError("Unknown log level name")
        self.log_level = level
        self.console_handler.setLevel(level)
        for log in self.loggers.values():
            log.setLevel(level)


log_manager = LogManager()


class Timer(object):
    """ Logs the time taken by the body of a with statement at INFO level
    """

    def __init__(self, log, description):
        self._log = log
        self._description = description
        self._start_time = None

    def __enter__(self):
        if self._log.isEnabledFor(logging.INFO):
            self._start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._start_time is None:
            return
        elapsed_ms = (time.perf_counter() - self._start_time) * 1.0e3
        self._log.info("%s: Took %.3f ms", self._description, elapsed_ms)
