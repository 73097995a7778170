from __future__ import annotations

"""Transaction payload schemas.

Shape checks only (types, required keys, ranges that do not depend on pool
state). The pool still enforces semantics. Unknown keys are rejected.
"""

from typing import Any, Dict, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from lumina.ledger.constants import BPS_DENOMINATOR
from lumina.runtime.errors import BoundsError

Json = Dict[str, Any]


class _StrictModel(BaseModel):
    """Strict model: reject unknown keys and lax coercions ("5" -> 5)."""

    model_config = ConfigDict(extra="forbid", strict=True)


class _StakeRef(_StrictModel):
    stake_id: int = Field(..., ge=1)


class StakePayload(_StrictModel):
    amount: int = Field(..., gt=0)
    split_bps: int = Field(0, ge=0, le=BPS_DENOMINATOR)


class StakeForAddressPayload(StakePayload):
    beneficiary: str = Field(..., min_length=1)


class UnstakeRequestPayload(_StakeRef):
    pass


class UnstakePayload(_StakeRef):
    # Omitted = full exit.
    amount: Optional[int] = Field(None, gt=0)


class ClaimPayload(_StakeRef):
    pass


class SplitUpdateRequestPayload(_StakeRef):
    new_bps: int = Field(..., ge=0, le=BPS_DENOMINATOR)


class PayoutWalletReassignPayload(_StakeRef):
    new_wallet: str = Field(..., min_length=1)


class UnstakerReassignPayload(_StakeRef):
    new_unstaker: str = Field(..., min_length=1)


class RewardAddPayload(_StrictModel):
    amount: int = Field(..., gt=0)


class EmergencyWithdrawPayload(_StakeRef):
    pass


class WhitelistPayload(_StrictModel):
    address: str = Field(..., min_length=1)


class UnallocatedRewardReleasePayload(_StrictModel):
    to: str = Field(..., min_length=1)


class ParamsSetPayload(_StrictModel):
    name: str = Field(..., min_length=1)
    value: Union[bool, int, str]


Schema = Type[_StrictModel]

SCHEMA_BY_TX_TYPE: Dict[str, Schema] = {
    "STAKE": StakePayload,
    "STAKE_FOR_ADDRESS": StakeForAddressPayload,
    "UNSTAKE_REQUEST": UnstakeRequestPayload,
    "UNSTAKE": UnstakePayload,
    "CLAIM": ClaimPayload,
    "SPLIT_UPDATE_REQUEST": SplitUpdateRequestPayload,
    "PAYOUT_WALLET_REASSIGN": PayoutWalletReassignPayload,
    "UNSTAKER_REASSIGN": UnstakerReassignPayload,
    "REWARD_ADD": RewardAddPayload,
    "EMERGENCY_WITHDRAW": EmergencyWithdrawPayload,
    "WHITELIST_ADD": WhitelistPayload,
    "WHITELIST_REMOVE": WhitelistPayload,
    "UNALLOCATED_REWARD_RELEASE": UnallocatedRewardReleasePayload,
    "PARAMS_SET": ParamsSetPayload,
}


def schema_for(tx_type: str) -> Optional[Schema]:
    return SCHEMA_BY_TX_TYPE.get(str(tx_type or "").strip().upper())


def validate_payload(tx_type: str, payload: Any) -> _StrictModel:
    """Parse a payload into its model. Raises BoundsError on any mismatch."""
    sch = schema_for(tx_type)
    if sch is None:
        raise BoundsError("unknown_tx_type", {"tx_type": tx_type})
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise BoundsError("payload_must_be_object", {"tx_type": tx_type})
    try:
        return sch(**payload)
    except ValidationError as ve:
        errors = [
            {"loc": list(e.get("loc", ())), "type": e.get("type"), "msg": e.get("msg")} for e in ve.errors()
        ]
        raise BoundsError("schema_validation_failed", {"tx_type": tx_type, "errors": errors}) from ve


__all__ = ["SCHEMA_BY_TX_TYPE", "schema_for", "validate_payload"]
