from cadence.models.lead import Lead
from cadence.models.activity import LeadMessage, LeadTask
from cadence.models.audience import Audience
from cadence.models.campaign import Campaign
from cadence.models.sequence import Sequence, Step
from cadence.models.enrollment import Enrollment
from cadence.models.broadcast import Broadcast

__all__ = [
    "Lead",
    "LeadMessage",
    "LeadTask",
    "Audience",
    "Campaign",
    "Sequence",
    "Step",
    "Enrollment",
    "Broadcast",
]
