import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from equiploan.config import settings
from equiploan.middleware.audit import AuditMiddleware
from equiploan.middleware.exceptions import register_exception_handlers
from equiploan.routers import audit, auth, health, loans, permissions, products, users, volunteers
from equiploan.utils.audit_dispatch import audit_dispatcher

logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logging.getLogger("equiploan").setLevel(settings.log_level.upper())

logger = logging.getLogger("equiploan.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("EquipLoan starting (%s)", settings.environment)
    yield
    # Flush audit entries still in flight
    pending = audit_dispatcher.pending
    await audit_dispatcher.drain()
    logger.info("EquipLoan stopped; flushed %d pending audit entries", pending)


app = FastAPI(
    title="EquipLoan",
    description="Equipment lending and volunteer tracking for nonprofits",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware (last added runs outermost) ───────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Audit trail, wrapping CORS so preflight responses are recorded too
app.add_middleware(AuditMiddleware)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(users.router, prefix="/api/users", tags=["users"])
app.include_router(permissions.router, prefix="/api/permissions", tags=["permissions"])
app.include_router(products.router, prefix="/api/products", tags=["products"])
app.include_router(loans.router, prefix="/api/loans", tags=["loans"])
app.include_router(volunteers.router, prefix="/api/volunteers", tags=["volunteers"])
app.include_router(audit.router, prefix="/api/audit", tags=["audit"])
