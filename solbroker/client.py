"""BrokerClient — async HTTP client for a running solbroker service.

Any failure, whether transport, non-200 status or an ``{ok: false}``
envelope, surfaces as ``CompilerUnavailableError`` carrying the
service's error text when there is one.
"""

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

_COMPILE_PATH = "/v1/compile"


class CompilerUnavailableError(Exception):
    """The compile service could not produce a result."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class BrokerClient:
    """Posts ``{version, input}`` to ``/v1/compile``."""

    def __init__(
        self,
        host: str,
        *,
        timeout: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._host = host.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def compile(self, version: str, standard_input: dict[str, Any]) -> dict[str, Any]:
        """Compile ``standard_input`` with ``version``; return the compiler output.

        Raises:
            CompilerUnavailableError: On any failure.
        """
        url = f"{self._host}{_COMPILE_PATH}"
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                resp = await client.post(url, json={"version": version, "input": standard_input})
            except httpx.HTTPError as exc:
                msg = f"compile service unreachable: {exc}"
                raise CompilerUnavailableError(msg) from exc

        try:
            envelope = resp.json()
        except ValueError:
            envelope = None

        if resp.status_code != 200 or not isinstance(envelope, dict) or not envelope.get("ok"):
            error = envelope.get("error") if isinstance(envelope, dict) else None
            msg = error or f"compile service returned {resp.status_code}"
            logger.debug("Compile of %s failed: %s", version, msg)
            raise CompilerUnavailableError(msg, status_code=resp.status_code)

        return envelope.get("result") or {}
