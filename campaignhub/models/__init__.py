"""
Database models - import all models here so create_all can discover them.
"""
from campaignhub.models.customer import Customer
from campaignhub.models.order import Order
from campaignhub.models.segment import Segment
from campaignhub.models.campaign import Campaign
from campaignhub.models.communication_log import CommunicationLog

__all__ = [
    "Customer",
    "Order",
    "Segment",
    "Campaign",
    "CommunicationLog",
]
