import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .db import engine
from .settings import settings
from .state import AppState
from .routers import auth
from .routers import health
from .routers import quizzes
from .routers import student


logger = logging.getLogger("verifiche")
if not logger.handlers:
	_h = logging.StreamHandler()
	_h.setFormatter(logging.Formatter("[%(levelname)s] %(name)s: %(message)s"))
	logger.addHandler(_h)
logger.setLevel(settings.log_level.upper())

app = FastAPI(title="Verifiche API")

app.add_middleware(
	CORSMiddleware,
	allow_origins=["*"],
	allow_credentials=False,
	allow_methods=["*"],
	allow_headers=["*"],
)

app.include_router(health.router)
app.include_router(auth.router)
app.include_router(quizzes.router)
app.include_router(student.router)


@app.on_event("startup")
async def startup_event():
	ctx = AppState.from_engine(
		engine,
		app_id=settings.app_id,
		public_base_url=settings.public_base_url,
	)
	await ctx.start()
	app.state.ctx = ctx
	logger.info("Document store ready (app_id=%s)", settings.app_id)


@app.on_event("shutdown")
async def shutdown_event():
	ctx = getattr(app.state, "ctx", None)
	if ctx is not None:
		ctx.stop()
