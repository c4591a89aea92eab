# wabot/campaign_scheduler.py
"""
Campaign Scheduler

✓ One target group per run per campaign, gated by send_interval_days
✓ force=True bypasses the interval gate for one immediate send
✓ Cursor past the last group → campaign flips inactive
✓ Empty group → cursor advances, nothing is sent
✓ Placeholders: {nombre} (any casing)
✓ Per-lead failures are isolated; the group still completes
✓ Cursor / last_sent_at / sent_count move only after the whole group
  (a crash mid-group resends that group on the next run)
"""

from __future__ import annotations

import argparse
import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from wabot.datastore import STORE, Store, StoreError
from wabot.messaging import send_and_log
from wabot.models import Campaign
from wabot.runtime import get_logger, to_iso, utc_now
from wabot.schema import MessageSender, MessageStatus, campaigns_field_map
from wabot.templates import personalize
from wabot.whatsapp_sender import CHANNEL

log = get_logger("campaign_scheduler")
CAMPAIGN_FIELDS = campaigns_field_map()


def is_due(campaign: Campaign, now: datetime, force: bool = False) -> bool:
    if force or campaign.last_sent_at is None:
        return True
    return (now - campaign.last_sent_at).days >= campaign.send_interval_days


def _result(campaign: Campaign, status: str, **extra: Any) -> Dict[str, Any]:
    out = {"campaign_id": campaign.id, "campaign_name": campaign.name, "status": status}
    out.update(extra)
    return out


def _send_group(campaign: Campaign, lead_ids: List[str], *, store: Store, channel) -> Dict[str, int]:
    sent = failed = 0
    for lead in store.get_leads(lead_ids):
        try:
            body = personalize(campaign.message_template, lead.full_name)
            result = send_and_log(
                lead.id,
                lead.wa_id,
                body,
                channel,
                store,
                sender=MessageSender.CAMPAIGN,
                media_url=campaign.media_url,
            )
            store.record_campaign_send(
                campaign_id=campaign.id,
                lead_id=lead.id,
                message_id=result.message_id,
                status=MessageStatus.SENT if result.ok else MessageStatus.FAILED,
            )
        except Exception as exc:
            log.error("Campaign %s → lead %s failed: %s", campaign.id, lead.id, exc)
            failed += 1
            continue
        if result.ok:
            sent += 1
        else:
            failed += 1
    return {"sent": sent, "failed": failed}


def process_campaign(
    campaign: Campaign,
    *,
    store: Store,
    channel,
    force: bool = False,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utc_now()

    if not is_due(campaign, now, force):
        log.info("Campaign %s not due yet (last_sent_at=%s)", campaign.name, campaign.last_sent_at)
        return _result(campaign, "skipped", reason="not_due")

    if campaign.current_group_index >= len(campaign.target_groups):
        store.update_campaign(campaign.id, {CAMPAIGN_FIELDS["IS_ACTIVE"]: False})
        log.info("🏁 Campaign %s completed all %s groups", campaign.name, len(campaign.target_groups))
        return _result(campaign, "completed")

    group_id = campaign.target_groups[campaign.current_group_index]
    lead_ids = store.group_lead_ids(group_id)
    next_index = campaign.current_group_index + 1

    if not lead_ids:
        store.update_campaign(campaign.id, {CAMPAIGN_FIELDS["CURRENT_GROUP_INDEX"]: next_index})
        log.info("Campaign %s: group %s is empty, advancing to %s", campaign.name, group_id, next_index)
        return _result(campaign, "skipped", reason="empty_group", group_id=group_id)

    counts = _send_group(campaign, lead_ids, store=store, channel=channel)

    store.update_campaign(
        campaign.id,
        {
            CAMPAIGN_FIELDS["CURRENT_GROUP_INDEX"]: next_index,
            CAMPAIGN_FIELDS["LAST_SENT_AT"]: to_iso(now),
            CAMPAIGN_FIELDS["SENT_COUNT"]: campaign.sent_count + counts["sent"],
        },
    )
    log.info(
        "📣 Campaign %s group %s (%s/%s): sent=%s failed=%s",
        campaign.name, group_id, next_index, len(campaign.target_groups), counts["sent"], counts["failed"],
    )
    return _result(campaign, "sent", group_id=group_id, **counts)


def run_campaigns(
    *,
    campaign_id: Optional[str] = None,
    force: bool = False,
    store: Optional[Store] = None,
    channel=None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    store = store or STORE
    channel = channel or CHANNEL
    now = now or utc_now()

    log.info("🚀 Campaign Scheduler: campaign_id=%s force=%s", campaign_id or "ALL", force)
    if campaign_id:
        campaign = store.get_campaign(campaign_id)
        campaigns = [campaign] if campaign and campaign.is_active and campaign.target_groups else []
        if not campaigns:
            log.warning("⚠️ No active campaign found for '%s'.", campaign_id)
    else:
        campaigns = store.list_active_campaigns()

    results = []
    for campaign in campaigns:
        try:
            results.append(process_campaign(campaign, store=store, channel=channel, force=force, now=now))
        except StoreError as exc:
            log.error("❌ Campaign %s aborted: %s", campaign.id, exc)
            results.append(_result(campaign, "error", error=str(exc)))

    total = sum(int(r.get("sent", 0)) for r in results)
    return {"ok": True, "processed": len(results), "sent": total, "results": results}


# ---------- CLI ----------
def _parse_args():
    p = argparse.ArgumentParser(description="Campaign Scheduler")
    p.add_argument("--campaign", type=str, default=None, help="Campaign record id (default: all active)")
    p.add_argument("--force", action="store_true", help="Ignore the send interval for this run")
    return p.parse_args()


if __name__ == "__main__":
    args = _parse_args()
    print(json.dumps(run_campaigns(campaign_id=args.campaign, force=args.force), indent=2, default=str))
