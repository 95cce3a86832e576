# medtrack - family medication tracker core
__version__ = "0.1.0"
