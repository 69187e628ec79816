"""Application configuration loaded from config/app_config.yml."""
