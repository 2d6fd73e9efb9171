"""
Proposal Execution

GovernanceExecutor carries out the payload of a passed proposal:
  - RESOLUTION : nothing to do beyond recording it
  - TREASURY   : pay out the funds locked at election trigger
  - MINT       : mint membership tokens (requires allow_minting)
  - PARAMETER  : change a governance parameter
  - ACTION     : call a registered action
"""

import time
from typing import Any, Callable, Dict, List, Optional

from ..logger import get_logger
from ..config.loader import DAOConfig, ParameterType
from ..constants import MEMBERSHIP_TOKEN_ID
from ..exceptions import (
    ConfigurationError,
    ExecutionFailed,
    ProposalLifecycleError,
    ReentrantCallError,
    ValidationError,
)
from ..tokens import Ledger
from ..treasury import Treasury
from .payloads import (
    ActionPayload,
    MintPayload,
    ParameterPayload,
    ProposalType,
    ResolutionPayload,
    TreasuryPayload,
)
from .proposals import Proposal, ProposalStatus

logger = get_logger(__name__)

_PAYLOAD_TYPES = (
    ResolutionPayload,
    TreasuryPayload,
    MintPayload,
    ParameterPayload,
    ActionPayload,
)


class GovernanceExecutor:
    """
    Executes passed proposals.

    Payload effects happen before the proposal is marked EXECUTED; if the
    payload raises, the proposal stays PASSED and execution may be retried.
    """

    def __init__(
        self,
        ledger: Ledger,
        treasury: Treasury,
        config: DAOConfig,
        set_parameter_fn: Optional[Callable[[ParameterType, int], Any]] = None,
    ):
        """
        Args:
            set_parameter_fn: Callable(parameter, value) applying a parameter
                change. Defaults to config.set_parameter.
        """
        self._ledger = ledger
        self._treasury = treasury
        self._config = config
        self._set_parameter_fn = set_parameter_fn or config.set_parameter
        self._actions: Dict[str, Callable[..., Any]] = {}
        self._execution_log: List[Dict[str, Any]] = []
        self._executing = False

        ledger.authorize_minter(self)

    # ── Registered actions ────────────────────────────────────────────

    def register_action(self, name: str, action_fn: Callable[..., Any]):
        """Register *action_fn* under *name* for ACTION payloads."""
        if not name:
            raise ValidationError("Action name is required")
        if not callable(action_fn):
            raise ValidationError(f"Action {name!r} is not callable")
        self._actions[name] = action_fn
        logger.info(f"Registered action '{name}'")

    def has_action(self, name: str) -> bool:
        return name in self._actions

    # ── Validation ────────────────────────────────────────────────────

    def validate_payload(self, payload: Any):
        """
        Check that *payload* could be executed under the current config.

        Raises ValidationError; called when a proposal is created.
        """
        if not isinstance(payload, _PAYLOAD_TYPES):
            raise ValidationError(f"Unsupported payload: {payload!r}")
        if isinstance(payload, MintPayload) and not self._config.allow_minting:
            raise ValidationError("Minting is disabled for this DAO")
        if isinstance(payload, ParameterPayload):
            try:
                self._config.check_parameter(payload.parameter, payload.new_value)
            except ConfigurationError as exc:
                raise ValidationError(str(exc)) from exc
        if isinstance(payload, ActionPayload) and payload.action not in self._actions:
            raise ValidationError(f"No action registered as '{payload.action}'")

    # ── Execute ───────────────────────────────────────────────────────

    def execute(self, proposal: Proposal) -> Dict[str, Any]:
        """
        Execute a PASSED proposal and mark it EXECUTED.

        Raises:
            ProposalLifecycleError: proposal is not PASSED
            ReentrantCallError:     called from inside a running payload
            ExecutionFailed:        the payload could not be carried out
        """
        if self._executing:
            raise ReentrantCallError("Execution already in progress")
        if proposal.status == ProposalStatus.EXECUTED:
            raise ProposalLifecycleError(f"Proposal #{proposal.id} was already executed")
        if proposal.status != ProposalStatus.PASSED:
            raise ProposalLifecycleError(
                f"Proposal #{proposal.id} is not PASSED (status={proposal.status.name})"
            )

        self._executing = True
        try:
            changes = self._apply_payload(proposal)
        except (ExecutionFailed, ReentrantCallError):
            raise
        except Exception as exc:
            logger.warning(f"Proposal #{proposal.id} execution failed: {exc}")
            raise ExecutionFailed(f"Proposal #{proposal.id} execution failed: {exc}") from exc
        finally:
            self._executing = False

        proposal.locks = []
        proposal.transition_to(ProposalStatus.EXECUTED, "Executed")

        self._execution_log.append({
            "proposalId": proposal.id,
            "proposalType": proposal.payload.proposal_type.name,
            "changes": changes,
            "executedAt": time.time(),
        })
        logger.info(
            f"Proposal #{proposal.id} EXECUTED: "
            f"{proposal.payload.proposal_type.name}: {changes}"
        )
        return changes

    def _apply_payload(self, proposal: Proposal) -> Dict[str, Any]:
        payload = proposal.payload
        changes: Dict[str, Any] = {}

        if payload.proposal_type == ProposalType.RESOLUTION:
            changes["resolution"] = proposal.description

        elif payload.proposal_type == ProposalType.TREASURY:
            transfer = self._treasury.debit_and_unlock(
                payload.asset, payload.amount, payload.recipient
            )
            changes["treasury_transfer"] = transfer.to_dict()

        elif payload.proposal_type == ProposalType.MINT:
            if not self._config.allow_minting:
                raise ExecutionFailed(f"Proposal #{proposal.id}: minting is disabled")
            self._ledger.mint(MEMBERSHIP_TOKEN_ID, payload.recipient, payload.amount, minter=self)
            changes["mint"] = {"recipient": payload.recipient, "amount": payload.amount}

        elif payload.proposal_type == ProposalType.PARAMETER:
            old = self._set_parameter_fn(payload.parameter, payload.new_value)
            changes[payload.parameter.name] = {"old": old, "new": payload.new_value}

        elif payload.proposal_type == ProposalType.ACTION:
            action_fn = self._actions.get(payload.action)
            if action_fn is None:
                raise ExecutionFailed(f"No action registered as '{payload.action}'")
            result = action_fn(**payload.params)
            if result is False:
                raise ExecutionFailed(f"Action '{payload.action}' reported failure")
            changes["action"] = {"name": payload.action, "result": result}

        else:
            raise ExecutionFailed(f"Unsupported payload type {payload.proposal_type!r}")

        return changes

    # ── Snapshots ─────────────────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        return {"execution_log": len(self._execution_log)}

    def revert(self, snapshot: Dict[str, Any]):
        del self._execution_log[snapshot["execution_log"]:]
        self._executing = False

    # ── Queries ───────────────────────────────────────────────────────

    @property
    def execution_log(self) -> List[Dict[str, Any]]:
        return list(self._execution_log)

    def execution_count(self) -> int:
        return len(self._execution_log)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "executionLog": self._execution_log,
            "actions": sorted(self._actions),
        }

    def __repr__(self) -> str:
        return (
            f"<GovernanceExecutor actions={len(self._actions)} "
            f"executed={len(self._execution_log)}>"
        )
