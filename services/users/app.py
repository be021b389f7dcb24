from contextlib import asynccontextmanager
import logging

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy import func
from sqlalchemy.orm import Session

from common import auth
from common.config import get_settings
from common.database import Base, SessionLocal, engine, get_db
from common.dependencies import get_current_user, require_admin
from common.logging_middleware import add_audit_middleware
from common.models import RoleEnum, User
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import CountRead, Token, UserCreate, UserRead

logger = logging.getLogger(__name__)
settings = get_settings()


def bootstrap_admin() -> None:
    """Create the admin named in configuration; nothing happens when unset."""
    if not (settings.admin_username and settings.admin_password):
        logger.info("No admin credentials configured, skipping admin bootstrap")
        return
    db = SessionLocal()
    try:
        admin = auth.ensure_admin(db, settings.admin_username, settings.admin_password, settings.admin_email)
        logger.info("Admin account '%s' is ready", admin.username)
    finally:
        db.close()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    bootstrap_admin()
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Users Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "users")
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "users"}


@app.post("/users/register", response_model=UserRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
def register_user(request: Request, user_in: UserCreate, db: Session = Depends(get_db)) -> User:
    username = user_in.username.lower()
    email = user_in.email.lower()
    if db.query(User).filter((User.username == username) | (User.email == email)).first():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username or email already exists")

    user = User(
        name=user_in.name.strip(),
        username=username,
        email=email,
        phone=user_in.phone.strip() if user_in.phone else None,
        role=RoleEnum.GUEST,
        hashed_password=auth.get_password_hash(user_in.password),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@app.post("/users/login", response_model=Token)
@limiter.limit("10/minute")
def login(request: Request, form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)) -> Token:
    user = auth.authenticate_user(db, form_data.username, form_data.password)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Incorrect username or password")

    access_token = auth.create_access_token({"sub": user.username, "role": user.role.value})
    return Token(access_token=access_token)


@app.get("/users/me", response_model=UserRead)
def read_me(current_user: User = Depends(get_current_user)) -> User:
    return current_user


@app.get("/users", response_model=list[UserRead])
@limiter.limit("20/minute")
def list_users(request: Request, _: User = Depends(require_admin), db: Session = Depends(get_db)) -> list[User]:
    return db.query(User).order_by(User.created_at.desc()).all()


@app.get("/users/count", response_model=CountRead)
@limiter.limit("20/minute")
def count_users(request: Request, _: User = Depends(require_admin), db: Session = Depends(get_db)) -> CountRead:
    return CountRead(count=db.query(func.count(User.id)).scalar() or 0)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.users_service_port)
