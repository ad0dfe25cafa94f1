from .logger import PerformanceLogger, get_logger, setup_logging

__all__ = ['PerformanceLogger', 'get_logger', 'setup_logging']
