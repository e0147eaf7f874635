"""Pushes pipeline status to a running status service over its UNIX socket."""

import logging
from typing import Optional

import httpx

from platconf.models.status import StatusRecord


class ReportService:
    """Forwards status writes to ``PUT /status`` on the status socket."""

    def __init__(
        self,
        socket_path: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 5.0,
    ):
        """Initialize report service.

        Args:
            socket_path: UNIX socket of the status service write endpoint
            transport: Optional httpx transport, a fresh one bound to socket_path
                is created per report otherwise
            timeout: Request timeout in seconds
        """
        self.logger = logging.getLogger("platconf.reporter")
        self.socket_path = socket_path
        self.transport = transport
        self.timeout = timeout
        # host part is ignored on a UNIX socket
        self.report_endpoint = "http://platconf/status"

    async def report_status(self, record: StatusRecord) -> bool:
        """Send a full status record.

        All three fields are sent, nulls included, so the receiving side ends
        up with exactly this record.

        Returns:
            True if the status service accepted it

        Note:
            Failures are logged but not raised, the update does not depend on
            anybody watching it
        """
        payload = record.model_dump(mode="json")
        self.logger.debug(f"Reporting status: {payload}")

        try:
            transport = self.transport or httpx.AsyncHTTPTransport(uds=self.socket_path)
            async with httpx.AsyncClient(transport=transport, timeout=self.timeout) as client:
                response = await client.put(self.report_endpoint, json=payload)
                response.raise_for_status()
                return True

        except httpx.HTTPError as e:
            self.logger.warning(
                f"Failed to report status to {self.socket_path}: {e}. "
                f"Continuing update..."
            )
        except Exception as e:
            self.logger.error(
                f"Unexpected error reporting status: {e}",
                exc_info=True,
            )
        return False
