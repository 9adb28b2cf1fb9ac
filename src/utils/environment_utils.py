from dotenv import load_dotenv
import os

# Utils
from utils.log_utils import LogUtil

"""
Utility class for environment variables
"""
class EnvironmentUtils:
    def __init__(self, log_util: LogUtil):

        # Load environment variables
        load_dotenv()

        # Initialize logger
        self.log_util = log_util

        # Environment variables
        self.env_variables = {
            "APP_ENV": os.getenv("APP_ENV", "production"),
            "HOST": os.getenv("HOST", "0.0.0.0"),
            "PORT": int(os.getenv("PORT", "5000")),
            "ORG_ID": os.getenv("ORG_ID", "AutomationFlow"),
            "LOKI_URL": os.getenv("LOKI_URL", ""),
            "MONGO_URI": os.getenv("MONGO_URI", "mongodb://localhost:27017"),
            "MONGO_DB_NAME": os.getenv("MONGO_DB_NAME", "automation_flow_db"),
            "EMAIL_SERVICE_API_URL": os.getenv("EMAIL_SERVICE_API_URL", "http://localhost:8019/emails/send"),
            "EMAIL_SOURCE_ADDRESS": os.getenv("EMAIL_SOURCE_ADDRESS", "noreply@automation.local"),
            "EMAIL_SUBJECT": os.getenv("EMAIL_SUBJECT", "Automation Test"),
            "CORS_ORIGIN": os.getenv("CORS_ORIGIN", "http://localhost:3000"),
            "STALE_RUN_CHECK_INTERVAL_SECONDS": int(os.getenv("STALE_RUN_CHECK_INTERVAL_SECONDS", "300")),
            "STALE_RUN_GRACE_SECONDS": int(os.getenv("STALE_RUN_GRACE_SECONDS", "3600")),
            "DEBUG": os.getenv("DEBUG", "false"),
        }

    def get_env_variable(self, variable_name: str) -> str | int:
        if variable_name not in self.env_variables:
            self.log_util.error(service_name="EnvironmentUtils", message=f"Environment variable {variable_name} not found")
            raise ValueError(f"Environment variable {variable_name} not found")
        return self.env_variables[variable_name]
