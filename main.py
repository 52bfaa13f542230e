"""Clinic EMR - Billing and Referrals Service."""

import uvicorn

from clinic_emr.config import settings


if __name__ == "__main__":
    uvicorn.run(
        "clinic_emr.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=settings.DEBUG,
    )
