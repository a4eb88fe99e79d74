from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loyalty_core.db import engine, Base

from loyalty_core.models.tenant import Tenant
from loyalty_core.models.customer import Customer
from loyalty_core.models.program import Program
from loyalty_core.models.token_rule import TokenRule
from loyalty_core.models.ledger_transaction import LedgerTransaction
from loyalty_core.models.loyalty_balance import LoyaltyBalance
from loyalty_core.models.reward import Reward
from loyalty_core.models.redemption import Redemption
from loyalty_core.models.membership_plan import MembershipPlan
from loyalty_core.models.membership import Membership
from loyalty_core.models.message_template import MessageTemplate
from loyalty_core.models.notification_log import NotificationLogEntry
from loyalty_core.models.internal_job import InternalJob

from loyalty_core.routes.programs import router as programs_router
from loyalty_core.routes.token_rules import router as token_rules_router
from loyalty_core.routes.wallet import router as wallet_router
from loyalty_core.routes.rewards import router as rewards_router
from loyalty_core.routes.redemptions import router as redemptions_router
from loyalty_core.routes.memberships import router as memberships_router
from loyalty_core.routes.stats import router as stats_router
from loyalty_core.routes.internal_jobs import router as internal_jobs_router

app = FastAPI(title="Loyalty Core")

# ─── CORS ─────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "https://localhost:3000",
        "http://127.0.0.1:3000",
        "https://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def startup():
    Base.metadata.create_all(bind=engine)


app.include_router(programs_router)
app.include_router(token_rules_router)
app.include_router(wallet_router)
app.include_router(rewards_router)
app.include_router(redemptions_router)
app.include_router(memberships_router)
app.include_router(stats_router)
app.include_router(internal_jobs_router)


@app.get("/")
def read_root():
    return {"message": "Loyalty Core is running"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="127.0.0.1", port=8001)
