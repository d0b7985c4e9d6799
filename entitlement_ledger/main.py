import logging
from typing import Optional

import psycopg2
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from entitlement_ledger import app_context
from entitlement_ledger.app.routes.entitlements import router as entitlements_router
from entitlement_ledger.app.feature_gates import FeatureGateError
from entitlement_ledger.app.services.entitlements import prepare_datastore
from entitlement_ledger.auth import CallerIdentity
from entitlement_ledger.auth import resolve_identity_from_token
from entitlement_ledger.config import load_ledger_config


load_dotenv()

CONFIG = load_ledger_config()

logging.basicConfig(
    level=CONFIG.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("entitlements.api")


def get_conn():
    return psycopg2.connect(**CONFIG.db_settings())


def resolve_identity(session_token: Optional[str]) -> Optional[CallerIdentity]:
    return resolve_identity_from_token(CONFIG, session_token)


app = FastAPI(title="Entitlement Ledger API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(CONFIG.cors_allow_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app_context.configure(
    get_conn=get_conn,
    resolve_identity=resolve_identity,
    config=CONFIG,
)

app.include_router(entitlements_router)


@app.exception_handler(FeatureGateError)
def handle_feature_gate_error(request: Request, exc: FeatureGateError):
    return exc.to_response()


@app.on_event("startup")
def setup_ledger_datastore() -> None:
    prepare_datastore()
    logger.info("Entitlement ledger ready (store=%s)", CONFIG.store_backend)
