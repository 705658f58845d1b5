__app_name__ = "edumetrics"
__version__ = "0.3.0"
