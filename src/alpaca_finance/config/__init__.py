from .settings import AlpacaSettings, HttpConfig, LoggingConfig, StreamConfig, load_settings
