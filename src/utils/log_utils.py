import logging
from logging_loki import LokiHandler
from dotenv import load_dotenv
import os

class NonEmptyTagsFilter(logging.Filter):
    def filter(self, record):
        # Check if the record has 'tags' attribute
        tags = getattr(record, 'tags', None)
        if tags is None:
            return True  # No tags to check, allow the record
        # Exclude the record if any tag value is empty or None
        for key, value in tags.items():
            if value is None or value == '':
                return False
        return True

class LogUtil:
    def __init__(self):

        # Load environment variables
        load_dotenv()

        self.logger = logging.getLogger("automation_flow_service")
        self.logger.setLevel(logging.DEBUG if os.getenv("DEBUG", "false").lower() == "true" else logging.INFO)

        # Handlers are attached once per process, LogUtil may be built more than once
        if not self.logger.handlers:
            loki_url = os.getenv("LOKI_URL", "")
            if loki_url:
                loki_handler = LokiHandler(
                    url=loki_url,
                    tags={
                        "application": "automation_flow_service",
                        "environment": os.getenv("APP_ENV", "production"),
                        "org_id": os.getenv("ORG_ID", "AutomationFlow")
                    },
                    version="1"
                )
                loki_handler.addFilter(NonEmptyTagsFilter())
                self.logger.addHandler(loki_handler)

            # Console handler for local terminal output
            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.DEBUG)
            console_formatter = logging.Formatter('%(asctime)s - %(name)s - [%(levelname)s] - %(message)s')
            console_handler.setFormatter(console_formatter)
            self.logger.addHandler(console_handler)

        # Suppress pymongo background task noise
        logging.getLogger("pymongo").setLevel(logging.WARNING)

        # Suppress motor (async pymongo) background task noise
        logging.getLogger("motor").setLevel(logging.WARNING)

    def info(self, service_name: str, message: str):
        self.logger.info(f"{message}", extra={"tags": {"service_name": service_name}})

    def error(self, service_name: str, message: str):
        self.logger.error(f"{message}", extra={"tags": {"service_name": service_name}})

    def warning(self, service_name: str, message: str):
        self.logger.warning(f"{message}", extra={"tags": {"service_name": service_name}})

    def debug(self, service_name: str, message: str):
        self.logger.debug(f"{message}", extra={"tags": {"service_name": service_name}})
