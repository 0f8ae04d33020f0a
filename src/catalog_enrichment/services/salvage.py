"""Recovery of partial results from runs that terminated abnormally.

A run that crashed or hit the graph's recursion limit may still have left
a research record or a checkpointed evidence bundle in the repository.
``SalvageRecovery`` turns whatever is there into a ``SalvageResult`` and
only raises when there is nothing at all to keep.
"""

from __future__ import annotations

import logging

from catalog_enrichment.domain.exceptions import ConfigurationError, SalvageError
from catalog_enrichment.domain.values import SalvageResult
from catalog_enrichment.services.repository import ResearchRepository

logger = logging.getLogger(__name__)

MIN_EVIDENCE_FOR_SALVAGE = 1


class SalvageRecovery:
    """Rebuild the best available result for an aborted run.

    Parameters
    ----------
    repository:
        Where ``persist_results`` and the evidence checkpoints wrote to.
    min_evidence:
        Evidence count below which a salvaged research record carries a
        low-confidence warning.
    """

    def __init__(
        self,
        repository: ResearchRepository | None,
        min_evidence: int = MIN_EVIDENCE_FOR_SALVAGE,
    ) -> None:
        if repository is None:
            raise ConfigurationError(
                "SalvageRecovery requires a research repository", collaborator="repository"
            )
        self._repository = repository
        self._min_evidence = min_evidence

    def salvage(self, item_id: str, run_id: str) -> SalvageResult:
        """Return the persisted research, or the evidence alone, for *run_id*.

        Raises
        ------
        SalvageError
            If neither research nor evidence was persisted.
        """
        research = self._repository.find_latest_research(item_id)
        bundle = self._repository.get_evidence_bundle(run_id)
        evidence_count = len(bundle.items) if bundle is not None else 0

        if research is not None:
            warnings: tuple[str, ...] = ()
            if evidence_count < self._min_evidence:
                warnings = (
                    f"Low-confidence salvage: research record found but only "
                    f"{evidence_count} evidence item(s) were collected",
                )
                logger.warning("salvage: item=%s %s", item_id, warnings[0])
            logger.info(
                "salvage: recovered research for item=%s run=%s (evidence=%d)",
                item_id,
                run_id,
                evidence_count,
            )
            return SalvageResult(
                item_id=item_id,
                run_id=run_id,
                success=True,
                partial=False,
                research=research,
                evidence_count=evidence_count,
                warnings=warnings,
            )

        if evidence_count > 0:
            warning = (
                f"No structured research was finalized; salvaged "
                f"{evidence_count} evidence item(s) only"
            )
            logger.warning("salvage: item=%s run=%s %s", item_id, run_id, warning)
            return SalvageResult(
                item_id=item_id,
                run_id=run_id,
                success=True,
                partial=True,
                evidence_count=evidence_count,
                warnings=(warning,),
            )

        raise SalvageError(
            f"Nothing to salvage for item '{item_id}' (run '{run_id}'): "
            f"no research record and no evidence were persisted",
            item_id=item_id,
            run_id=run_id,
        )
