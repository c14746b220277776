from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from .errors import ExecutionError
from .types import ChainId, TransactionPlan
from .validation import validate_transaction_plans
from .wallet import Signer

logger = logging.getLogger(__name__)


class ChainExecutor:
    """Routes validated transaction plans to the signer of a chain.

    Batches are not atomic: plans are sent in order, and a failure at step k
    leaves steps 1..k-1 on chain and skips everything after k.
    """

    def __init__(self, signers: Mapping[ChainId, Signer]) -> None:
        self._signers = dict(signers)

    @property
    def chains(self) -> list[ChainId]:
        return list(self._signers)

    def signer_for(self, chain: ChainId) -> Signer:
        signer = self._signers.get(chain)
        if signer is None:
            raise ExecutionError("route", 0, 0, f"no signer configured for chain {chain.value}")
        return signer

    async def execute(self, action_name: str, plans: list[TransactionPlan], chain: ChainId) -> str:
        signer = self._signers.get(chain)
        if signer is None:
            raise ExecutionError(action_name, 1, len(plans), f"no signer configured for chain {chain.value}")

        total = len(plans)
        if total == 0:
            raise ExecutionError(action_name, 0, 0, "nothing to execute")
        sent: list[str] = []
        for step, plan in enumerate(plans, start=1):
            try:
                tx_hash = await signer.send_transaction(plan)
            except Exception as exc:
                logger.warning(
                    "Action %s failed at step %d/%d on %s (%d already sent): %s",
                    action_name,
                    step,
                    total,
                    chain.value,
                    len(sent),
                    exc,
                )
                raise ExecutionError(action_name, step, total, str(exc), completed=sent) from exc
            sent.append(tx_hash)
            logger.info("Action %s step %d/%d sent on %s: %s", action_name, step, total, chain.value, tx_hash)

        return sent[-1]

    async def validate_and_execute(self, action_name: str, raw: Any, chain: ChainId) -> str:
        plans = validate_transaction_plans(raw)
        return await self.execute(action_name, plans, chain)
