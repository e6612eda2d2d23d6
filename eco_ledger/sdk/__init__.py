"""
SDK for Eco Ledger.

Provides gateways to the external generative-AI service.
"""

from .advisor import AdvisorGateway, BusinessCaseReport
from .gateways import ClassifierGateway, ResponseGateway

__all__ = ["AdvisorGateway", "BusinessCaseReport", "ClassifierGateway", "ResponseGateway"]
