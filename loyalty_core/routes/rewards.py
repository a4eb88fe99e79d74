from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from loyalty_core.db import get_db
from loyalty_core.deps.messaging import get_personalizer
from loyalty_core.deps.tenant import get_active_tenant
from loyalty_core.models.reward import Reward
from loyalty_core.routes.http_errors import program_or_404, to_http, unwrap
from loyalty_core.schemas.reward import RedeemRequest, RewardCreate, RewardOut, RewardUpdate
from loyalty_core.services import operations, redemption_service
from loyalty_core.services.errors import LoyaltyError
from loyalty_core.services.personalization import PersonalizationClient


router = APIRouter(prefix="/rewards", tags=["rewards"])


def _get_reward(db: Session, program_id, reward_id: UUID) -> Reward:
    reward = db.query(Reward).filter(Reward.id == reward_id, Reward.program_id == program_id).first()
    if not reward:
        raise HTTPException(status_code=404, detail="Reward not found")
    return reward


@router.get("", response_model=list[RewardOut])
def list_rewards(
    active: bool | None = None,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    program = program_or_404(db, tenant_id)

    q = db.query(Reward).filter(Reward.program_id == program.id)
    if active is not None:
        q = q.filter(Reward.is_active.is_(active))
    return q.order_by(Reward.tokens_required.asc()).all()


@router.post("", response_model=RewardOut)
def create_reward(
    payload: RewardCreate,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    program = program_or_404(db, tenant_id)
    try:
        redemption_service.validate_reward(
            tokens_required=payload.tokens_required,
            reward_type=payload.reward_type,
            stock_limit=payload.stock_limit,
            valid_days=payload.valid_days,
        )
    except LoyaltyError as e:
        raise to_http(e)

    reward = Reward(program_id=program.id, stock_used=0, **payload.model_dump())
    db.add(reward)
    db.commit()
    db.refresh(reward)
    return reward


@router.get("/{reward_id}", response_model=RewardOut)
def get_reward(
    reward_id: UUID,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    program = program_or_404(db, tenant_id)
    return _get_reward(db, program.id, reward_id)


@router.patch("/{reward_id}", response_model=RewardOut)
def update_reward(
    reward_id: UUID,
    payload: RewardUpdate,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    program = program_or_404(db, tenant_id)
    reward = _get_reward(db, program.id, reward_id)

    data = payload.model_dump(exclude_unset=True)
    try:
        redemption_service.validate_reward(
            tokens_required=data.get("tokens_required", reward.tokens_required),
            reward_type=data.get("reward_type", reward.reward_type),
            stock_limit=data.get("stock_limit", reward.stock_limit),
            valid_days=data.get("valid_days", reward.valid_days),
        )
    except LoyaltyError as e:
        raise to_http(e)

    for k, v in data.items():
        setattr(reward, k, v)

    db.commit()
    db.refresh(reward)
    return reward


@router.delete("/{reward_id}")
def delete_reward(
    reward_id: UUID,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
):
    program = program_or_404(db, tenant_id)
    reward = _get_reward(db, program.id, reward_id)

    # redemptions reference the reward, so it is retired instead of removed
    reward.is_active = False
    db.commit()
    return {"deleted": True}


@router.post("/{reward_id}/redeem")
def redeem_reward(
    reward_id: UUID,
    payload: RedeemRequest,
    tenant_id: UUID = Depends(get_active_tenant),
    db: Session = Depends(get_db),
    personalizer: PersonalizationClient = Depends(get_personalizer),
):
    return unwrap(
        operations.redeem_reward(
            db,
            tenant_id,
            payload.customer_id,
            reward_id,
            notes=payload.notes,
            personalizer=personalizer,
        )
    )
