import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .db import Base, engine
from .errors import install_error_handlers
from .settings import settings
from .gemini_client import llm_configured
from .routers import auth
from .routers import classes
from .routers import folders
from .routers import quizzes
from .routers import homework
from .routers import ai


logging.basicConfig(
	level=getattr(logging, settings.log_level.upper(), logging.INFO),
	format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Classroom Vocabulary API")

app.add_middleware(
	CORSMiddleware,
	allow_origins=["*"],
	allow_credentials=True,
	allow_methods=["*"],
	allow_headers=["*"],
)

install_error_handlers(app)

app.include_router(auth.router)
app.include_router(classes.router)
app.include_router(folders.router)
app.include_router(quizzes.router)
app.include_router(homework.router)
app.include_router(ai.router)


@app.get("/health")
def health():
	return {"status": "ok", "llm_configured": llm_configured()}


@app.on_event("startup")
async def startup_event():
	# Initialize DB schema
	Base.metadata.create_all(bind=engine)
