# wabot/routes/jobs.py
"""
🧠 Scheduled Job Router
-----------------------
Secure endpoints for cron (or manual) triggers of the batch jobs:
campaign group sends and appointment reminders.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from wabot.auth import require_cron_token
from wabot.campaign_scheduler import run_campaigns
from wabot.reminders import run_reminders
from wabot.runtime import get_logger

log = get_logger("jobs")

router = APIRouter(prefix="/jobs", tags=["jobs"], dependencies=[Depends(require_cron_token)])


class CampaignTrigger(BaseModel):
    campaign_id: Optional[str] = None
    force: bool = False


@router.post("/campaigns")
def campaigns_job(
    trigger: Optional[CampaignTrigger] = None,
    campaign_id: Optional[str] = Query(default=None),
    force: bool = Query(default=False),
):
    """Body or query string: {campaign_id?, force?}; no id means every active campaign."""
    trigger = trigger or CampaignTrigger()
    cid = trigger.campaign_id or campaign_id
    do_force = trigger.force or force
    log.info("🚀 Campaign job triggered (campaign_id=%s force=%s)", cid, do_force)
    return run_campaigns(campaign_id=cid, force=do_force)


@router.post("/reminders")
def reminders_job():
    log.info("🚀 Reminder job triggered")
    return run_reminders()
