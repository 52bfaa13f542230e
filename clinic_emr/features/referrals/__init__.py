# Referrals Feature

from clinic_emr.features.referrals.models import Referral
from clinic_emr.features.referrals.router import router
from clinic_emr.features.referrals.service import ReferralService

__all__ = ["Referral", "router", "ReferralService"]
