"""Resolution of the thresholds that apply to a server.

A server is governed by the union of thresholds scoped directly to it,
global thresholds, and thresholds scoped to any group it is a direct member
of. Group scope is one level only: thresholds on ancestor groups do not
apply to members of descendant groups.
"""

import logging

from servmon.alerts.repository import ThresholdRepository
from servmon.alerts.schemas import Threshold
from servmon.servers.repository import ServerRepository

logger = logging.getLogger(__name__)


class ThresholdResolver:
    """Computes the applicable threshold set for a server."""

    def __init__(
        self,
        threshold_repo: ThresholdRepository,
        server_repo: ServerRepository,
    ) -> None:
        self._threshold_repo = threshold_repo
        self._server_repo = server_repo

    async def resolve_applicable(self, server_id: int) -> list[Threshold]:
        """Enabled thresholds applicable to ``server_id``.

        Order is direct thresholds by id, then global thresholds by id,
        then group thresholds by ascending group id. Each threshold
        appears once. An unknown server simply gets the global thresholds.

        Raises:
            Exception: datastore errors on the direct/global lookup
                propagate. Group lookup failures are logged and skipped.
        """
        thresholds = await self._threshold_repo.get_enabled_direct_and_global(server_id)
        seen = {t.id for t in thresholds}

        try:
            group_ids = await self._server_repo.get_group_ids(server_id)
        except Exception as e:
            logger.warning(
                "Group lookup failed for server %s, skipping group thresholds: %s",
                server_id, e,
            )
            return thresholds

        for group_id in group_ids:
            try:
                group_thresholds = await self._threshold_repo.get_enabled_for_group(group_id)
            except Exception as e:
                logger.warning(
                    "Threshold lookup failed for group %s (server %s): %s",
                    group_id, server_id, e,
                )
                continue

            for threshold in group_thresholds:
                if threshold.id in seen:
                    continue
                seen.add(threshold.id)
                thresholds.append(threshold)

        return thresholds
