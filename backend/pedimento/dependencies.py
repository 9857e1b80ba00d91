from functools import lru_cache

from pedimento.compliance.engine import ComplianceEngine
from pedimento.compliance.policy import load_policy
from pedimento.config import settings
from pedimento.document_extractor.pipeline import PedimentoPipeline


@lru_cache
def get_compliance_engine() -> ComplianceEngine:
    return ComplianceEngine(policy=load_policy(settings.compliance_policy_path))


def get_pipeline() -> PedimentoPipeline:
    return PedimentoPipeline(settings, engine=get_compliance_engine())
