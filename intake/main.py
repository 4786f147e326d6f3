from fastapi import FastAPI
from contextlib import asynccontextmanager
import logging
from intake.analysis_state import AnalysisStateGate
from intake.auth import BitbucketAuth
from intake.bitbucket import BitbucketClient
from intake.config import Config
from intake.pipeline import RiskPipeline
from intake.pr_storage import PrStorage
from intake.redis_client import create_store
from intake.webhooks import router as webhook_router


logging.basicConfig(
      level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
      format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
  )
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Opening {Config.STORE_BACKEND} store")
    store = create_store(Config.STORE_BACKEND, Config.REDIS_URL)

    auth = BitbucketAuth(
        access_token=Config.BITBUCKET_ACCESS_TOKEN,
        username=Config.BITBUCKET_USERNAME,
        app_password=Config.BITBUCKET_APP_PASSWORD,
    )
    if not auth.is_configured:
        logger.warning("No Bitbucket credentials configured, only public repositories are reachable")

    client = BitbucketClient(Config.BITBUCKET_API_BASE, auth, retry_config=Config.RETRY)
    storage = PrStorage(
        store,
        stale_after_hours=Config.STALE_AFTER_HOURS,
        red_below=Config.SCORING.red_below,
    )

    app.state.store = store
    app.state.storage = storage
    app.state.pipeline = RiskPipeline(
        gate=AnalysisStateGate(store),
        storage=storage,
        client=client,
        scoring_config=Config.SCORING,
        post_comments=Config.POST_COMMENTS,
        risk_model_version=Config.RISK_MODEL_VERSION,
    )

    yield

    logger.info("Closing store")
    await store.close()


app = FastAPI(lifespan=lifespan)

@app.get("/")
def ping():
    return {"message": "hello world"}

@app.get("/health")
def health():
    return {"status": "healthy"}

app.include_router(webhook_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "intake.main:app",
        host=Config.SERVICE_HOST,
        port=Config.SERVICE_PORT,
    )
