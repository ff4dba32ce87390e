"""Translation of control outcomes into mapping errors."""

from __future__ import annotations

import logging

from igdnat.nat.exceptions import MappingError
from igdnat.nat.messages import FaultMessage, Outcome, TransportFailure

logger = logging.getLogger(__name__)

# GetGenericPortMappingEntry: index past the last entry
ARRAY_INDEX_INVALID = 713
# GetSpecificPortMappingEntry / DeletePortMapping: no such mapping
NO_SUCH_ENTRY_IN_ARRAY = 714

UPNP_ERROR_HINTS: dict[int, str] = {
    401: "Invalid Action - Router does not implement this action",
    402: "Invalid Args - Check parameter formats",
    501: "Action Failed - Router rejected the request",
    606: "Action not authorized - UPnP port mapping may be disabled",
    713: "SpecifiedArrayIndexInvalid - No entry at this index",
    714: "NoSuchEntryInArray - Port mapping not found",
    715: "WildCardNotPermittedInSrcIP - Invalid remote host parameter",
    716: "WildCardNotPermittedInExtPort - Invalid external port",
    718: "ConflictInMappingEntry - Port mapping conflict (port may be in use)",
    724: "SamePortValuesRequired - Internal and external ports must match for this router",
    725: "OnlyPermanentLeasesSupported - Router only supports permanent mappings",
    726: "RemoteHostOnlySupportsWildcard - Remote host must be empty",
    727: "ExternalPortOnlySupportsWildcard - External port must be a wildcard",
}


class ErrorTranslator:
    """Turns fault and transport outcomes into :class:`MappingError`."""

    def to_error(self, outcome: FaultMessage | TransportFailure) -> MappingError:
        if isinstance(outcome, FaultMessage):
            description = outcome.description
            hint = UPNP_ERROR_HINTS.get(outcome.code)
            if not description and hint:
                description = hint
            return MappingError(outcome.code, description)
        return MappingError(outcome.status, outcome.message)

    def raise_for_outcome(
        self, outcome: Outcome, *, sentinel: int | None = None
    ) -> bool:
        """Raise for failed outcomes.

        Args:
            outcome: Completed outcome of an exchange
            sentinel: Fault code that means a normal "nothing there" result
                for the calling operation

        Returns:
            True if the outcome was the sentinel fault, False on success

        Raises:
            MappingError: For any other fault or transport failure

        """
        if isinstance(outcome, FaultMessage):
            if sentinel is not None and outcome.code == sentinel:
                return True
            logger.debug("UPnP fault %d: %s", outcome.code, outcome.description)
            raise self.to_error(outcome)
        if isinstance(outcome, TransportFailure):
            logger.debug(
                "UPnP transport failure (status %d): %s",
                outcome.status,
                outcome.message,
            )
            raise self.to_error(outcome)
        return False


translator = ErrorTranslator()
