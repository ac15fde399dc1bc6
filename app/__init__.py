"""
Main package initialization.
Sets up logging and other app-wide configurations.
"""
from app.core.logging import setup_logging

# Initialize logging at package level
logger = setup_logging()
logger.debug("Initializing Task Calendar Sync application")
