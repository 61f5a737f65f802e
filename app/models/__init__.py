from app.models.batch_lock import DomainBatchLock
from app.models.brand_mention import BrandMention
from app.models.citation import Citation
from app.models.domain import Domain
from app.models.mention_analysis import MentionAnalysis
from app.models.prompt import Prompt
from app.models.prompt_run import PromptRun

__all__ = [
    "BrandMention",
    "Citation",
    "Domain",
    "DomainBatchLock",
    "MentionAnalysis",
    "Prompt",
    "PromptRun",
]
