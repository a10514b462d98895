"""
Browser workflows for sources that need a multi-step session.

Each workflow scripts one site through the navigator's steps and exposes
a pure extraction function over the detail page HTML.
"""
from scrapers.workflows.company_registry import CompanyRegistryWorkflow, extract_company_profile
from scrapers.workflows.evaluation_roll import EvaluationRollWorkflow, extract_evaluation

WORKFLOWS = {
    EvaluationRollWorkflow.source_type: EvaluationRollWorkflow,
    CompanyRegistryWorkflow.source_type: CompanyRegistryWorkflow,
}


def get_workflow(source_type: str):
    """Instantiate the workflow registered for source_type (KeyError if none)."""
    return WORKFLOWS[source_type]()


__all__ = [
    "CompanyRegistryWorkflow",
    "EvaluationRollWorkflow",
    "WORKFLOWS",
    "extract_company_profile",
    "extract_evaluation",
    "get_workflow",
]
