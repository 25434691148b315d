"""API route modules for the claims and remittance backend.

This package contains focused routers that are registered with the main FastAPI app.
Each router handles a specific domain of functionality.

Routers:
- claims: 837P validation and generation, claim lifecycle, charges
- remittances: 835 intake, reconciliation matching and posting
- detection: Denial analysis, underpayment scans and fee schedules
"""

from .claims import router as claims_router
from .detection import router as detection_router
from .remittances import router as remittances_router

__all__ = ["claims_router", "detection_router", "remittances_router"]
