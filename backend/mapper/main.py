from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .db.schema import init_db
from .engines.entries.services import build_entry_services
from .routers import entry, health, pending, settings
from .scheduler import start_retry_scheduler, stop_retry_scheduler

app = FastAPI(title="Island Mapper API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("startup")
async def startup() -> None:
    init_db()
    app.state.entries = build_entry_services()
    start_retry_scheduler(app.state.entries)


@app.on_event("shutdown")
async def shutdown() -> None:
    await stop_retry_scheduler()


app.include_router(health.router)
app.include_router(entry.router)
app.include_router(pending.router)
app.include_router(settings.router)


@app.get("/")
def root():
    return {"message": "Island Mapper API", "docs": "/docs"}
