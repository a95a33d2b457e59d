"""Models package."""

from .team import Team
from .user import User
from .credit_period import CreditPeriod
from .usage_record import UsageRecord
from .batch import Batch
from .generation import Generation, GeneratedImage
from .generation_job import GenerationJob
from .commerce_account import CommerceAccount
from .sync_job import SyncJob
from .external_catalog import ExternalProduct, ExternalVariant
