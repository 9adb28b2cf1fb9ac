from typing import Optional, Dict, Any
import html
import httpx

# Utils
from utils.log_utils import LogUtil
from utils.environment_utils import EnvironmentUtils

# Exceptions
from exceptions.flow_exception import DeliveryException


class NotifierService:
    """
    Contract for delivering the message of an action node.
    Implementations raise DeliveryException when the message cannot be delivered.
    """

    async def send(self, to: str, subject: str, body: str) -> Dict[str, Any]:
        raise NotImplementedError


class EmailNotifierService(NotifierService):
    """
    Sends emails through the email delivery service API.
    Transport timeouts belong here, the flow runner does not impose any.
    """

    def __init__(
        self,
        log_util: LogUtil,
        environment_utils: EnvironmentUtils,
        email_service_api_url: Optional[str] = None,
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.log_util = log_util
        self.environment_utils = environment_utils
        self.email_service_api_url = email_service_api_url or self.environment_utils.get_env_variable("EMAIL_SERVICE_API_URL")
        self.source_email = self.environment_utils.get_env_variable("EMAIL_SOURCE_ADDRESS")
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    def _json_body(self, response: httpx.Response) -> Dict[str, Any]:
        """
        Decoded JSON object of the response, or {} when the body is not one.
        The content-type header alone is not trusted.
        """
        if not response.headers.get("content-type", "").startswith("application/json"):
            return {}
        try:
            data = response.json()
        except ValueError:
            self.log_util.warning(
                service_name="EmailNotifierService",
                message=f"[SEND_EMAIL] Email service API returned malformed JSON (status {response.status_code})"
            )
            return {}
        return data if isinstance(data, dict) else {}

    async def send(self, to: str, subject: str, body: str) -> Dict[str, Any]:
        request_body = {
            "from": self.source_email,
            "to": to,
            "subject": subject,
            "text": body,
            "html": "<p>" + html.escape(body).replace("\n", "<br>") + "</p>"
        }

        self.log_util.info(
            service_name="EmailNotifierService",
            message=f"[SEND_EMAIL] Sending email to {to} via {self.email_service_api_url}"
        )

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                response = await client.post(
                    self.email_service_api_url,
                    json=request_body,
                    headers={"Content-Type": "application/json"}
                )
        except httpx.TimeoutException:
            self.log_util.error(
                service_name="EmailNotifierService",
                message="[SEND_EMAIL] Timeout calling email service API"
            )
            raise DeliveryException(message="Failed to send email: timeout calling email service API")
        except httpx.HTTPError as e:
            self.log_util.error(
                service_name="EmailNotifierService",
                message=f"[SEND_EMAIL] Error calling email service API: {str(e)}"
            )
            raise DeliveryException(message=f"Failed to send email: {str(e)}")

        if response.status_code >= 400:
            error_detail = self._json_body(response).get("detail") or response.text
            self.log_util.error(
                service_name="EmailNotifierService",
                message=f"[SEND_EMAIL] Email service API returned error: {response.status_code} - {error_detail}"
            )
            raise DeliveryException(message=f"Failed to send email: {error_detail}")

        response_data = self._json_body(response)
        message_id = response_data.get("messageId") or response_data.get("message_id") or ""

        self.log_util.info(
            service_name="EmailNotifierService",
            message=f"[SEND_EMAIL] Email sent to {to}, message id: {message_id}"
        )
        return {"messageId": message_id}
