import logging
from typing import List

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from addresses import Kind, community_address, config_address, is_address, survey_address, user_address, vote_address
from auth import signing_message
from config import settings
from errors import InvalidAddress, ProgramError
from runtime import Runtime, get_runtime
from schemas import (
    Community,
    MessageRequest,
    NonceResponse,
    ProgramConfig,
    Receipt,
    SurveyView,
    TransactionRequest,
    User,
    VoteStatus,
)

logging.basicConfig(level=settings.LOG_LEVEL)

app = FastAPI(title="Community Survey API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ProgramError)
async def program_error_handler(request: Request, exc: ProgramError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


@app.get("/")
def root():
    return {"message": "Community Survey API running"}


@app.get("/test")
def test_database(runtime: Runtime = Depends(get_runtime)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "initialized": False,
    }
    try:
        info = runtime.describe()
        response["database"] = f"✅ {info['backend']}"
        response.update({k: v for k, v in info.items() if k != "backend"})
        response["initialized"] = runtime.store.exists(config_address(), ProgramConfig)
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:60]}"
    return response


# Nonce endpoint
@app.post("/api/nonce", response_model=NonceResponse)
def create_nonce(address: str, runtime: Runtime = Depends(get_runtime)):
    if not address:
        raise HTTPException(status_code=400, detail="Address required")
    return runtime.gate.issue_nonce(address)


@app.post("/api/transactions/message")
def transaction_message(payload: MessageRequest):
    """Exact text the caller must sign for a transaction."""
    return {"message": signing_message(payload.operation, payload.args, payload.accounts, payload.nonce)}


@app.post("/api/transactions", response_model=Receipt)
def submit_transaction(payload: TransactionRequest, runtime: Runtime = Depends(get_runtime)):
    return runtime.submit(payload)


@app.get("/api/config", response_model=ProgramConfig)
def get_config(runtime: Runtime = Depends(get_runtime)):
    return runtime.get_config()


@app.get("/api/users/{identity}", response_model=User)
def get_user(identity: str, runtime: Runtime = Depends(get_runtime)):
    return runtime.get_user(identity)


@app.get("/api/communities/{name}", response_model=Community)
def get_community(name: str, runtime: Runtime = Depends(get_runtime)):
    return runtime.get_community(name)


@app.get("/api/communities/{name}/surveys", response_model=List[SurveyView])
def list_surveys(name: str, runtime: Runtime = Depends(get_runtime)):
    return runtime.list_community_surveys(name)


@app.get("/api/surveys/{address}", response_model=SurveyView)
def get_survey(address: str, runtime: Runtime = Depends(get_runtime)):
    if not is_address(address):
        raise InvalidAddress(f"Malformed account address: {address!r}")
    return runtime.get_survey(address)


@app.get("/api/surveys/{address}/votes/{voter}", response_model=VoteStatus)
def survey_vote_status(address: str, voter: str, runtime: Runtime = Depends(get_runtime)):
    return runtime.has_voted(address, voter)


@app.get("/api/addresses/{kind}")
def derive_address(kind: Kind, seeds: List[str] = Query(default=[])):
    """Derive an account address the same way the program checks it."""
    helpers = {
        Kind.CONFIG: config_address,
        Kind.COMMUNITY: community_address,
        Kind.USER: user_address,
        Kind.SURVEY: survey_address,
        Kind.VOTE: vote_address,
    }
    try:
        address = helpers[kind](*seeds)
    except TypeError:
        raise HTTPException(status_code=400, detail=f"Wrong number of seeds for {kind.value}")
    return {"kind": kind.value, "seeds": seeds, "address": address}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
