import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from wosync.api.routes import reconcile, sessions, signed_docs, sync_jobs, work_orders, workspaces
from wosync.config import get_settings
from wosync.db.session import init_db

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Work Order Sync Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup() -> None:
    init_db()


app.include_router(sessions.router)
app.include_router(workspaces.router)
app.include_router(work_orders.router)
app.include_router(signed_docs.router)
app.include_router(sync_jobs.router)
app.include_router(reconcile.router)
