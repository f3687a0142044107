import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .clients.llm_client import GeminiProvider
from .config import settings
from .errors import (
    AlreadyFinalized, AlreadyFinalizing, ClaimNotFound, ConfigurationError,
    InvalidInput, InvalidState, ProviderFailure, TruthstakeError,
)
from .lifecycle import ClaimLifecycle
from .models import Claim, Vote
from .pipeline import verify_claim
from .schema import ClaimIn, FinalizeIn, OpenVotingIn, SettlementOutcome, VerifyIn, VoteIn
from .settlement import SettlementEngine
from .storage import ClaimStore
from .verification import VerificationConfig, VerificationOrchestrator
from .votes import VoteService


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(title="Truthstake Claim Settlement API")

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------- dependencies ----------

_store = None


def get_store() -> ClaimStore:
    global _store
    if _store is None:
        _store = ClaimStore(settings.database_url)
    return _store


def get_lifecycle(store: ClaimStore = Depends(get_store)) -> ClaimLifecycle:
    return ClaimLifecycle(store, default_duration_sec=settings.voting_duration_sec)


def get_vote_service(store: ClaimStore = Depends(get_store),
                     lifecycle: ClaimLifecycle = Depends(get_lifecycle)) -> VoteService:
    return VoteService(store, lifecycle, min_stake=settings.min_stake)


def get_settlement(store: ClaimStore = Depends(get_store)) -> SettlementEngine:
    return SettlementEngine(store, default_fee_bps=settings.fee_bps)


_orchestrator = None


def get_orchestrator() -> VerificationOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        provider = GeminiProvider(
            settings.gemini_api_key,
            log_calls=settings.log_llm_calls,
            log_dir=settings.llm_log_dir,
        )
        _orchestrator = VerificationOrchestrator(provider, VerificationConfig.from_settings(settings))
    return _orchestrator


# ---------- errors ----------

def _status_for(exc: TruthstakeError) -> int:
    if isinstance(exc, ClaimNotFound):
        return 404
    if isinstance(exc, (AlreadyFinalized, AlreadyFinalizing, InvalidState)):
        return 409
    if isinstance(exc, InvalidInput):
        return 400
    if isinstance(exc, ConfigurationError):
        return 503
    if isinstance(exc, ProviderFailure):
        return 502
    return 500


@app.exception_handler(TruthstakeError)
def handle_engine_error(request: Request, exc: TruthstakeError):
    status = _status_for(exc)
    logger.warning(f"{request.method} {request.url.path} -> {status}: {exc}")
    body = {"error": str(exc), "type": type(exc).__name__}
    if getattr(exc, "field", None):
        body["field"] = exc.field
    if getattr(exc, "status", None):
        body["status"] = exc.status
    return JSONResponse(status_code=status, content=body)


# ---------- claims ----------

@app.post("/claims", response_model=Claim, status_code=201)
def create_claim(req: ClaimIn, lifecycle: ClaimLifecycle = Depends(get_lifecycle)):
    return lifecycle.create_claim(req)


@app.get("/claims/{claim_id}", response_model=Claim)
def get_claim(claim_id: str, lifecycle: ClaimLifecycle = Depends(get_lifecycle)):
    return lifecycle.refresh_status(lifecycle.get(claim_id))


@app.post("/claims/{claim_id}/open", response_model=Claim)
def open_voting(claim_id: str, req: OpenVotingIn, lifecycle: ClaimLifecycle = Depends(get_lifecycle)):
    return lifecycle.open_voting(
        claim_id,
        started_at=req.started_at,
        tx_hash=req.tx_hash,
        chain_id=req.chain_id,
        block_number=req.block_number,
    )


@app.post("/claims/{claim_id}/flag", response_model=Claim)
def flag_claim(claim_id: str, lifecycle: ClaimLifecycle = Depends(get_lifecycle)):
    return lifecycle.flag(claim_id)


@app.post("/claims/{claim_id}/unflag", response_model=Claim)
def unflag_claim(claim_id: str, lifecycle: ClaimLifecycle = Depends(get_lifecycle)):
    return lifecycle.unflag(claim_id)


# ---------- votes ----------

@app.get("/claims/{claim_id}/votes", response_model=List[Vote])
def list_votes(claim_id: str, store: ClaimStore = Depends(get_store),
               lifecycle: ClaimLifecycle = Depends(get_lifecycle)):
    lifecycle.get(claim_id)
    return store.find_votes(claim_id)


@app.post("/claims/{claim_id}/votes", response_model=Vote, status_code=201)
def submit_vote(claim_id: str, req: VoteIn, votes: VoteService = Depends(get_vote_service)):
    return votes.submit_vote(claim_id, req)


# ---------- verification & settlement ----------

@app.post("/claims/{claim_id}/verify", response_model=Claim)
def verify(
    claim_id: str,
    req: Optional[VerifyIn] = None,
    store: ClaimStore = Depends(get_store),
    lifecycle: ClaimLifecycle = Depends(get_lifecycle),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    weight_plan = req.weight_plan if req else None
    return verify_claim(store, lifecycle, orchestrator, claim_id, weight_plan)


@app.post("/claims/{claim_id}/finalize", response_model=SettlementOutcome)
def finalize(claim_id: str, req: Optional[FinalizeIn] = None,
             engine: SettlementEngine = Depends(get_settlement)):
    return engine.finalize(claim_id, req.fee_bps if req else None)
