from datetime import timedelta

from wabot import campaign_scheduler
from wabot.models import Campaign
from wabot.runtime import to_iso
from wabot.schema import MessageSender, campaign_sends_field_map, campaigns_field_map

CAMPAIGN_FIELDS = campaigns_field_map()
SEND_FIELDS = campaign_sends_field_map()


def _campaign(store, groups, template="Hola {NOMBRE}, tenemos 20% en monturas 🕶️", interval=3, **extra):
    fields = {
        CAMPAIGN_FIELDS["NAME"]: "Promo octubre",
        CAMPAIGN_FIELDS["MESSAGE_TEMPLATE"]: template,
        CAMPAIGN_FIELDS["TARGET_GROUPS"]: groups,
        CAMPAIGN_FIELDS["CURRENT_GROUP_INDEX"]: 0,
        CAMPAIGN_FIELDS["SEND_INTERVAL_DAYS"]: interval,
        CAMPAIGN_FIELDS["IS_ACTIVE"]: True,
    }
    fields.update(extra)
    record = store.connector.campaigns().table.create(fields)
    return record["id"]


def _group(store, group_id, *people):
    ids = []
    for wa_id, name in people:
        lead = store.create_lead(wa_id, full_name=name)
        store.add_lead_to_group(group_id, lead.id)
        ids.append(lead.id)
    return ids


def _run(store, channel, now, **kwargs):
    return campaign_scheduler.run_campaigns(store=store, channel=channel, now=now, **kwargs)


def test_first_group_is_sent_and_cursor_advances(store, channel, now):
    cid = _campaign(store, ["grp_a", "grp_b"])
    _group(store, "grp_a", ("573001000001", "Ana"), ("573001000002", "Luis"))
    _group(store, "grp_b", ("573001000003", "Marta"))

    out = _run(store, channel, now)

    assert out["ok"] is True
    assert out["processed"] == 1
    assert out["sent"] == 2
    assert sorted(m["to"] for m in channel.sent) == ["573001000001", "573001000002"]

    campaign = store.get_campaign(cid)
    assert campaign.current_group_index == 1
    assert campaign.last_sent_at == now
    assert campaign.sent_count == 2
    assert campaign.is_active is True


def test_interval_gate_blocks_a_second_run_the_same_day(store, channel, now):
    cid = _campaign(store, ["grp_a", "grp_b"])
    _group(store, "grp_a", ("573001000001", "Ana"))
    _group(store, "grp_b", ("573001000003", "Marta"))

    _run(store, channel, now)
    again = _run(store, channel, now + timedelta(hours=5))

    assert again["sent"] == 0
    assert again["results"][0]["status"] == "skipped"
    assert again["results"][0]["reason"] == "not_due"
    assert len(channel.sent) == 1
    assert store.get_campaign(cid).current_group_index == 1

    later = _run(store, channel, now + timedelta(days=3))
    assert later["sent"] == 1
    assert channel.sent[-1]["to"] == "573001000003"


def test_force_bypasses_the_interval(store, channel, now):
    cid = _campaign(store, ["grp_a", "grp_b"], **{CAMPAIGN_FIELDS["LAST_SENT_AT"]: to_iso(now - timedelta(hours=1))})
    _group(store, "grp_a", ("573001000001", "Ana"))

    assert _run(store, channel, now)["sent"] == 0
    forced = _run(store, channel, now, campaign_id=cid, force=True)
    assert forced["sent"] == 1


def test_cursor_past_last_group_completes_the_campaign(store, channel, now):
    cid = _campaign(store, ["grp_a"], **{CAMPAIGN_FIELDS["CURRENT_GROUP_INDEX"]: 1})

    out = _run(store, channel, now)

    assert out["results"][0]["status"] == "completed"
    assert channel.sent == []
    assert store.get_campaign(cid).is_active is False
    assert _run(store, channel, now)["processed"] == 0


def test_empty_group_only_advances_the_cursor(store, channel, now):
    cid = _campaign(store, ["grp_empty", "grp_b"])

    out = _run(store, channel, now)

    assert out["results"][0]["reason"] == "empty_group"
    campaign = store.get_campaign(cid)
    assert campaign.current_group_index == 1
    assert campaign.last_sent_at is None
    assert campaign.sent_count == 0


def test_name_placeholder_any_casing_and_missing_name(store, channel, now):
    _campaign(store, ["grp_a"], template="Hola {NOMBRE}! {nombre}, te esperamos")
    _group(store, "grp_a", ("573001000001", "Ana María"), ("573001000002", None))

    _run(store, channel, now)

    bodies = {m["to"]: m["body"] for m in channel.sent}
    assert bodies["573001000001"] == "Hola Ana María! Ana María, te esperamos"
    assert bodies["573001000002"] == "Hola {NOMBRE}! {nombre}, te esperamos"


def test_one_failed_recipient_does_not_stop_the_group(store, make_channel, messages, now):
    channel = make_channel(fail_for={"573001000002"})
    cid = _campaign(store, ["grp_a"])
    _group(store, "grp_a", ("573001000001", "Ana"), ("573001000002", "Luis"), ("573001000003", "Marta"))

    out = _run(store, channel, now)

    result = out["results"][0]
    assert result["sent"] == 2
    assert result["failed"] == 1
    assert store.get_campaign(cid).current_group_index == 1

    rows = [m for m in messages("outbound") if m.sender == MessageSender.CAMPAIGN.value]
    assert sorted(m.status for m in rows) == ["failed", "sent", "sent"]

    sends = store.connector.campaign_sends().table.all()
    assert sorted(r["fields"][SEND_FIELDS["STATUS"]] for r in sends) == ["failed", "sent", "sent"]
    assert {r["fields"][SEND_FIELDS["CAMPAIGN_ID"]] for r in sends} == {cid}


def test_media_campaign_sends_image_with_caption(store, channel, now):
    _campaign(
        store,
        ["grp_a"],
        template="Nueva colección {nombre}",
        **{CAMPAIGN_FIELDS["MEDIA_URL"]: "https://cdn.example.com/promo.jpg"},
    )
    _group(store, "grp_a", ("573001000001", "Ana"))

    _run(store, channel, now)

    assert channel.sent == [
        {
            "to": "573001000001",
            "type": "image",
            "media_url": "https://cdn.example.com/promo.jpg",
            "body": "Nueva colección Ana",
        }
    ]


def test_unknown_or_inactive_campaign_id_processes_nothing(store, channel, now):
    cid = _campaign(store, ["grp_a"], **{CAMPAIGN_FIELDS["IS_ACTIVE"]: False})
    _group(store, "grp_a", ("573001000001", "Ana"))

    assert _run(store, channel, now, campaign_id=cid)["processed"] == 0
    assert _run(store, channel, now, campaign_id="rec_missing")["processed"] == 0
    assert channel.sent == []


def test_target_groups_accept_comma_separated_text():
    campaign = Campaign.from_record(
        {"id": "rec1", "fields": {CAMPAIGN_FIELDS["TARGET_GROUPS"]: "grp_a, grp_b", CAMPAIGN_FIELDS["IS_ACTIVE"]: True}}
    )
    assert campaign.target_groups == ["grp_a", "grp_b"]
    assert campaign.send_interval_days == 7


def test_is_due(now):
    campaign = Campaign(id="c", name="c", message_template="", target_groups=["g"], send_interval_days=3)
    assert campaign_scheduler.is_due(campaign, now) is True
    campaign.last_sent_at = now - timedelta(days=2, hours=23)
    assert campaign_scheduler.is_due(campaign, now) is False
    assert campaign_scheduler.is_due(campaign, now, force=True) is True
    campaign.last_sent_at = now - timedelta(days=3)
    assert campaign_scheduler.is_due(campaign, now) is True
