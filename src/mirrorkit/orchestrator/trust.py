"""Import the shared root certificate into a service's Java trust store."""

import asyncio
import logging
from pathlib import Path
from typing import Sequence

from ..runtime.base import ContainerStatus
from .errors import CommandError, TrustImportWarning
from .models import TrustOutcome, TrustRequest, TrustResult

logger = logging.getLogger(__name__)

REMOTE_CERT_PATH = "/tmp/rootCA.pem"
TRUST_ALIAS = "local-root-ca"

KEYTOOL_IMPORT = (
    'keytool -import -trustcacerts -alias {alias} -file {path} '
    '-keystore "$JAVA_HOME/lib/security/cacerts" -storepass changeit -noprompt'
)

ALREADY_TRUSTED_MARKERS = ("already exists",)


def keytool_command(alias: str = TRUST_ALIAS, path: str = REMOTE_CERT_PATH) -> Sequence[str]:
    return ("sh", "-c", KEYTOOL_IMPORT.format(alias=alias, path=path))


class TrustBootstrapper:
    """Copy the root certificate into an instance and import it as root.

    The import never fails the node: a service that already trusts the
    certificate is reported as ``ALREADY_TRUSTED``, anything else as
    ``FAILED`` with a ``TrustImportWarning``. The caller restarts the
    instance in every case.
    """

    def __init__(
        self,
        runtime,
        certificate: Path,
        alias: str = TRUST_ALIAS,
        running_timeout: float = 120.0,
        poll_interval: float = 2.0,
    ):
        self.runtime = runtime
        self.certificate = Path(certificate)
        self.alias = alias
        self.running_timeout = running_timeout
        self.poll_interval = poll_interval

    def request_for(self, instance) -> TrustRequest:
        return TrustRequest(target=instance, certificate=self.certificate)

    async def bootstrap(self, request: TrustRequest) -> TrustResult:
        instance = request.target
        handle = instance.handle
        logger.info("Importing root certificate into %s", instance.id)

        if not await self._wait_running(handle):
            return self._warn(instance.id, f"{handle.name} did not reach running state")

        request.attempted = True
        try:
            await self.runtime.copy_into(handle, request.certificate, REMOTE_CERT_PATH)
            await self.runtime.exec(handle, keytool_command(self.alias), user="0")
        except CommandError as e:
            output = f"{e.stdout}\n{e.stderr}".lower()
            if any(marker in output for marker in ALREADY_TRUSTED_MARKERS):
                logger.info("Certificate alias %s already present in %s", self.alias, instance.id)
                return TrustResult(TrustOutcome.ALREADY_TRUSTED)
            return self._warn(instance.id, str(e))

        logger.info("Root certificate imported into %s", instance.id)
        return TrustResult(TrustOutcome.IMPORTED)

    async def _wait_running(self, handle) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.running_timeout
        while True:
            if await self.runtime.inspect_status(handle) is ContainerStatus.RUNNING:
                return True
            now = loop.time()
            if now >= deadline:
                return False
            await asyncio.sleep(min(self.poll_interval, deadline - now))

    @staticmethod
    def _warn(service_id: str, detail: str) -> TrustResult:
        warning = TrustImportWarning(f"Trust import into {service_id} failed: {detail}")
        logger.warning("%s (continuing with restart)", warning)
        return TrustResult(TrustOutcome.FAILED, warning)
