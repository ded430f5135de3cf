from thulubazaar.models.user import User, ADMIN_ROLES
from thulubazaar.models.ad import Ad, PROMOTION_FLAG_COLUMNS, PROMOTABLE_AD_STATUSES
from thulubazaar.models.payment_transaction import PaymentTransaction
from thulubazaar.models.payment_transition import PaymentTransition
from thulubazaar.models.ad_promotion import AdPromotion, PROMOTION_TYPES
from thulubazaar.models.promotion_pricing import PromotionPricing, PRICING_TIERS, ACCOUNT_TYPES
from thulubazaar.models.verification_request import VerificationRequest
from thulubazaar.models.job_run import JobRun

__all__ = [
    "User",
    "ADMIN_ROLES",
    "Ad",
    "PROMOTION_FLAG_COLUMNS",
    "PROMOTABLE_AD_STATUSES",
    "PaymentTransaction",
    "PaymentTransition",
    "AdPromotion",
    "PROMOTION_TYPES",
    "PromotionPricing",
    "PRICING_TIERS",
    "ACCOUNT_TYPES",
    "VerificationRequest",
    "JobRun",
]
