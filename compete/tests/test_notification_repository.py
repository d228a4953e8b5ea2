"""
Tests for the notification repository: unread state, bulk sends, purge
of old read notifications and statistics.
"""

from datetime import timedelta

import pytest
from bson import ObjectId

from compete.utils.datetime_utils import utcnow


@pytest.fixture
def notifications(service):
    return service.notifications


def _notification(user, **extra):
    return {"userId": user["id"], "title": "Info", "message": "Un message", **extra}


@pytest.mark.asyncio
async def test_create_notification_is_always_unread(notifications, participant):
    notification = await notifications.create_notification(
        _notification(participant, isRead=True, readAt=utcnow())
    )

    assert notification["isRead"] is False
    assert "readAt" not in notification
    assert notification["type"] == "INFO"
    assert notification["category"] == "SYSTEM"


@pytest.mark.asyncio
async def test_mark_all_as_read(notifications, participant, organizer):
    for _ in range(3):
        await notifications.create_notification(_notification(participant))
    await notifications.create_notification(_notification(organizer))

    assert await notifications.get_unread_count(participant["id"]) == 3
    assert await notifications.mark_all_as_read(participant["id"]) == 3
    assert await notifications.get_unread_count(participant["id"]) == 0
    assert await notifications.get_unread_count(organizer["id"]) == 1

    read = await notifications.find_by_user(participant["id"])
    assert all(n["isRead"] and n["readAt"] is not None for n in read)


@pytest.mark.asyncio
async def test_mark_as_read_scoped_to_user(notifications, participant, organizer):
    notification = await notifications.create_notification(_notification(participant))

    assert await notifications.mark_as_read(notification["id"], user_id=organizer["id"]) is None
    marked = await notifications.mark_as_read(notification["id"], user_id=participant["id"])
    assert marked["isRead"] is True
    assert marked["readAt"] is not None


@pytest.mark.asyncio
async def test_delete_old_notifications_keeps_unread(notifications, participant, db):
    old = utcnow() - timedelta(days=90)
    read_old = await notifications.create_notification(_notification(participant, title="Lu ancien"))
    unread_old = await notifications.create_notification(_notification(participant, title="Non lu ancien"))
    read_recent = await notifications.create_notification(_notification(participant, title="Lu récent"))
    await notifications.mark_as_read(read_old["id"])
    await notifications.mark_as_read(read_recent["id"])
    await db["Notification"].update_many(
        {"_id": {"$in": [ObjectId(read_old["id"]), ObjectId(unread_old["id"])]}},
        {"$set": {"createdAt": old}},
    )

    assert await notifications.delete_old_notifications(30) == 1

    remaining = {n["title"] for n in await notifications.find_by_user(participant["id"])}
    assert remaining == {"Non lu ancien", "Lu récent"}


@pytest.mark.asyncio
async def test_create_bulk_notifications(notifications, participant, organizer):
    count = await notifications.create_bulk_notifications(
        [participant["id"], organizer["id"], participant["id"]],
        {"title": "Maintenance", "message": "Le site sera indisponible", "category": "SYSTEM"},
    )

    assert count == 2
    assert await notifications.get_unread_count(participant["id"]) == 1
    assert await notifications.get_unread_count(organizer["id"]) == 1
    assert await notifications.create_bulk_notifications([], {"title": "x", "message": "y"}) == 0


@pytest.mark.asyncio
async def test_find_by_user_paging_and_unread_filter(notifications, participant):
    created = [await notifications.create_notification(_notification(participant)) for _ in range(3)]
    await notifications.mark_as_read(created[0]["id"])

    assert len(await notifications.find_by_user(participant["id"], unread_only=True)) == 2
    assert len(await notifications.find_by_user(participant["id"], limit=2)) == 2
    assert len(await notifications.find_by_user(participant["id"], limit=2, skip=2)) == 1


@pytest.mark.asyncio
async def test_find_by_category_and_related(notifications, participant, competition):
    await notifications.create_notification(_notification(
        participant,
        category="COMPETITION",
        relatedType="COMPETITION",
        relatedId=competition["id"],
    ))
    await notifications.create_notification(_notification(participant, category="MATCH"))

    assert len(await notifications.find_by_category(participant["id"], "COMPETITION")) == 1
    related = await notifications.find_by_related("COMPETITION", competition["id"])
    assert len(related) == 1
    assert related[0]["relatedId"] == competition["id"]


@pytest.mark.asyncio
async def test_get_notification_stats(notifications, participant):
    await notifications.create_notification(_notification(participant, type="SUCCESS", category="PARTICIPATION"))
    read = await notifications.create_notification(_notification(participant, type="WARNING", category="PARTICIPATION"))
    await notifications.create_notification(_notification(participant))
    await notifications.mark_as_read(read["id"])

    stats = await notifications.get_notification_stats(participant["id"])

    assert stats["total"] == 3
    assert stats["unread"] == 2
    assert stats["byType"] == {"SUCCESS": 1, "WARNING": 1, "INFO": 1}
    assert stats["byCategory"] == {"PARTICIPATION": 2, "SYSTEM": 1}
