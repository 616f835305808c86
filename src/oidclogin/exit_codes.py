"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~oidclogin.exceptions.OIDCLoginError` subclass.
Only the CLI uses these; the HTTP surface maps the same errors to status
codes instead.

Example::

    $ oidclogin discover
    $ echo $?
    5   # EXIT_PROVIDER_ERROR -- the discovery document could not be fetched
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required parameters."""

EXIT_AUTH_FAILURE = 3
"""A login flow was rejected (bad state, invalid ID token, missing session)."""

EXIT_CONFIG_ERROR = 4
"""Required configuration (issuer, client id) is missing or invalid."""

EXIT_PROVIDER_ERROR = 5
"""The OpenID provider failed or returned an error response."""
