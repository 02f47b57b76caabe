"""
auth.py

Credential sources for the Pub/Sub API. A credential source is asked for a
fresh `Credentials` snapshot on every RPC, so rotating a token only requires
the source to return the new value.
"""

import logging
import threading
import xml.etree.ElementTree as et
from typing import Optional, Protocol
from urllib.parse import urlparse

import requests

from ..errors import AuthenticationError
from ..models import Credentials


class CredentialSource(Protocol):
    def get_credentials(self) -> Credentials:
        """Return the current credentials or raise AuthenticationError."""


class StaticCredentialSource:
    """Credentials supplied by the host application, replaceable at any time."""

    def __init__(self, credentials: Optional[Credentials] = None):
        self._credentials = credentials
        self._lock = threading.Lock()

    def update(self, credentials: Credentials):
        with self._lock:
            self._credentials = credentials

    def get_credentials(self) -> Credentials:
        with self._lock:
            credentials = self._credentials
        if credentials is None:
            raise AuthenticationError("No credentials available")
        return credentials


class SoapLoginCredentialSource:
    """
    Logs in through the SOAP partner API with a username and password and
    serves the resulting session id, instance URL and org id.
    """

    def __init__(
        self,
        url: str,
        username: str,
        password: str,
        api_version: str = "57.0",
        timeout: float = 30.0,
    ):
        self.logger = logging.getLogger(__name__)
        self.url = url
        self.username = username
        self.password = password
        self.api_version = api_version
        self.timeout = timeout
        self._credentials: Optional[Credentials] = None
        self._lock = threading.Lock()

    def login(self) -> Credentials:
        """
        Sends a login request to the Salesforce SOAP API to retrieve a session
        token. The session token is bundled with the instance URL and org id,
        which together form the metadata headers needed for every RPC call.
        """
        url_suffix = "/services/Soap/u/" + self.api_version + "/"
        headers = {"content-type": "text/xml", "SOAPAction": "Login"}
        xml = (
            "<soapenv:Envelope xmlns:soapenv='http://schemas.xmlsoap.org/soap/envelope/' "
            + "xmlns:xsi='http://www.w3.org/2001/XMLSchema-instance' "
            + "xmlns:urn='urn:partner.soap.sforce.com'><soapenv:Body>"
            + "<urn:login><urn:username><![CDATA["
            + self.username
            + "]]></urn:username><urn:password><![CDATA["
            + self.password
            + "]]></urn:password></urn:login></soapenv:Body></soapenv:Envelope>"
        )
        try:
            res = requests.post(
                self.url + url_suffix, data=xml, headers=headers, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise AuthenticationError(f"SOAP login request failed: {e}", cause=e)

        if res.status_code != 200:
            raise AuthenticationError(
                f"SOAP login failed with status {res.status_code}"
            )

        try:
            res_xml = et.fromstring(res.content.decode("utf-8"))[0][0][0]
            url_parts = urlparse(res_xml[3].text)
            instance_url = "{}://{}".format(url_parts.scheme, url_parts.netloc)
            session_id = res_xml[4].text
            # Org ID lives in userInfo
            tenant_id = res_xml[6][8].text
        except (IndexError, et.ParseError) as e:
            self.logger.error(
                "Unexpected SOAP login response: %s", res.content[:500]
            )
            raise AuthenticationError(f"Could not parse SOAP login response: {e}", cause=e)

        credentials = Credentials(
            access_token=session_id, tenant_id=tenant_id, instance_url=instance_url
        )
        validate_credentials(credentials, self.logger)

        with self._lock:
            self._credentials = credentials
        self.logger.info(f"Logged in to {instance_url} (org {tenant_id})")
        return credentials

    def refresh(self) -> Credentials:
        """Discard the current session and log in again."""
        with self._lock:
            self._credentials = None
        return self.login()

    def get_credentials(self) -> Credentials:
        with self._lock:
            credentials = self._credentials
        if credentials is None:
            credentials = self.login()
        return credentials


def validate_credentials(credentials: Credentials, logger: Optional[logging.Logger] = None):
    """
    Validate authentication header formats.
    Raises AuthenticationError for missing values, warns on suspicious ones.
    """
    logger = logger or logging.getLogger(__name__)

    if not credentials.access_token:
        raise AuthenticationError("Session ID (accesstoken) is required")

    if not credentials.instance_url:
        raise AuthenticationError("Instance URL is required")

    if not credentials.tenant_id:
        raise AuthenticationError("Tenant ID (Organization ID) is required")

    if not credentials.instance_url.startswith(("https://", "http://")):
        logger.warning(f"Instance URL should use HTTPS: {credentials.instance_url}")

    # 15 or 18 character Salesforce ID
    if len(credentials.tenant_id) not in (15, 18):
        logger.warning(
            f"Tenant ID format may be invalid (should be 15 or 18 chars): {credentials.tenant_id}"
        )

    logger.debug(
        f"Authentication headers validated: org={credentials.tenant_id}, url={credentials.instance_url}"
    )
