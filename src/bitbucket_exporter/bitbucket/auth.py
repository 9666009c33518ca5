"""Bitbucket authentication module.

Builds the Authorization header for the configured auth kind. Basic auth
credentials come from the config file or, for the password, from an
environment variable.
"""

import base64
import logging
import os

from bitbucket_exporter.bitbucket.exceptions import AuthenticationError
from bitbucket_exporter.config import AuthConfig

logger = logging.getLogger(__name__)


class BitbucketAuth:
    """Bitbucket authentication manager.

    Supported kinds:
    - basic: username + app password, sent as ``Basic base64(user:pass)``
    - oauth2: declared only, produces no header

    The basic auth password is loaded from:
    1. ``auth.basic.password`` in the config
    2. The environment variable named by ``auth.basic.password_env``
    """

    def __init__(self, config: AuthConfig | None = None) -> None:
        """Initialize Bitbucket authentication.

        Args:
            config: Auth configuration. If None, uses defaults (basic auth
                    with credentials from the environment).

        Raises:
            AuthenticationError: If a username is set without a password.
        """
        self._config = config or AuthConfig()
        self._username = ""
        self._password = ""

        if self._config.type == "basic":
            self._load_basic_credentials()
        else:
            logger.warning(
                "Auth type %r is not implemented, requests are sent unauthenticated",
                self._config.type,
            )

    def _load_basic_credentials(self) -> None:
        basic = self._config.basic
        password = basic.password
        password_source = "config file"

        if not password and basic.password_env in os.environ:
            password = os.environ[basic.password_env]
            password_source = f"{basic.password_env} environment variable"

        if not basic.username:
            if password:
                raise AuthenticationError("Basic auth password set without a username")
            logger.warning("No Bitbucket credentials configured, using anonymous access")
            return

        if not password:
            raise AuthenticationError(
                f"No password for Bitbucket user {basic.username!r}. Set auth.basic.password "
                f"or the {basic.password_env} environment variable."
            )

        logger.info("Using Bitbucket credentials for %s from %s", basic.username, password_source)
        self._username = basic.username
        self._password = password

    @property
    def kind(self) -> str:
        """Configured auth kind."""
        return self._config.type

    @property
    def username(self) -> str:
        """Basic auth username, empty for anonymous access."""
        return self._username

    def get_authorization_header(self) -> dict[str, str]:
        """Get the Authorization header for API requests.

        Returns:
            Dictionary with the Authorization header, or an empty dict for
            anonymous access and unimplemented auth kinds.
        """
        if self._config.type == "basic" and self._username:
            raw = f"{self._username}:{self._password}".encode()
            return {"Authorization": "Basic " + base64.b64encode(raw).decode("ascii")}
        return {}
