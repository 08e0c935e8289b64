from enum import Enum
import logging
from typing import Dict, Optional

from cerberus import Validator
import requests
from requests.adapters import HTTPAdapter, Retry
from requests.auth import HTTPBasicAuth

from index_updater.models.schema_tools import contains_one_of

logger = logging.getLogger(__name__)

AuthMethod = Enum("AuthMethod", ["NO_AUTH", "BASIC_AUTH"])
HttpMethod = Enum("HttpMethod", ["GET", "POST", "PUT", "DELETE", "HEAD"])

DEFAULT_TIMEOUT_SECONDS = 60
DEFAULT_RETRIES = 3
# Only requests that are safe to repeat are retried; a replayed bulk or scroll POST is not.
RETRIED_METHODS = frozenset({"GET", "HEAD", "PUT", "DELETE"})
RETRIED_STATUSES = (502, 503, 504)


def _check_credentials(field, value, error):
    if value.get("username") is None or value.get("password") is None:
        error(field, "Must provide both username and password")
    elif not value["username"] or not value["password"]:
        error(field, "Both username and password must be non-empty")


SCHEMA = {
    "cluster": {
        "type": "dict",
        "schema": {
            "endpoint": {"type": "string", "required": True, "regex": "^https?://.+"},
            "allow_insecure": {"type": "boolean"},
            "timeout": {"type": "number", "min": 1},
            "retries": {"type": "integer", "min": 0},
            "no_auth": {"nullable": True},
            "basic_auth": {
                "type": "dict",
                "schema": {
                    "username": {"type": "string"},
                    "password": {"type": "string"},
                },
                "check_with": _check_credentials,
            },
        },
        "check_with": contains_one_of({auth.name.lower() for auth in AuthMethod})
    }
}


class Cluster:
    """
    Where the indexes live and how to reach them. Every HTTP session used against the cluster comes from
    new_session(), so reindex workers get the same auth, TLS and retry behaviour as the main thread.
    """

    def __init__(self, config: Dict) -> None:
        v = Validator(SCHEMA)
        if not v.validate({"cluster": config}):
            raise ValueError("Invalid config file for cluster", v.errors)

        self.config = config
        self.endpoint: str = config["endpoint"].rstrip("/")
        self.allow_insecure: bool = config.get("allow_insecure", False)
        self.timeout: float = config.get("timeout", DEFAULT_TIMEOUT_SECONDS)
        self.retries: int = config.get("retries", DEFAULT_RETRIES)
        self.auth_type = AuthMethod.BASIC_AUTH if "basic_auth" in config else AuthMethod.NO_AUTH
        if self.allow_insecure and self.endpoint.startswith("https"):
            logger.warning(f"TLS certificates of {self.endpoint} will not be verified")
            requests.packages.urllib3.disable_warnings()  # ignore: type
        logger.info(f"Cluster at {self.endpoint} using {self.auth_type.name.lower()}")

    def _auth(self) -> Optional[HTTPBasicAuth]:
        if self.auth_type == AuthMethod.BASIC_AUTH:
            credentials = self.config["basic_auth"]
            return HTTPBasicAuth(credentials["username"], credentials["password"])
        return None

    def new_session(self) -> requests.Session:
        session = requests.Session()
        session.auth = self._auth()
        session.verify = not self.allow_insecure
        retry = Retry(total=self.retries, backoff_factor=0.5, status_forcelist=RETRIED_STATUSES,
                      allowed_methods=RETRIED_METHODS, raise_on_status=False)
        adapter = HTTPAdapter(max_retries=retry)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        return session

    def call_api(self, path: str, method: HttpMethod = HttpMethod.GET, session: Optional[requests.Session] = None,
                 json_body=None, data=None, headers=None, params=None, timeout=None,
                 raise_error: bool = True) -> requests.Response:
        """
        One request against the cluster. An HTTP error status raises requests.HTTPError unless raise_error
        is False.
        """
        if session is None:
            session = self.new_session()
        r = session.request(method.name, f"{self.endpoint}{path}", params=params or {}, json=json_body,
                            data=data, headers=headers,
                            timeout=timeout if timeout is not None else self.timeout)
        logger.debug(f"{method.name} {path} -> {r.status_code} {r.text[:1000]}")
        if raise_error:
            r.raise_for_status()
        return r
