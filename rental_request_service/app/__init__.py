# rental_request_service/app/__init__.py
import logging

logger = logging.getLogger(__name__)
logger.info("Rental Request App Initialized")
