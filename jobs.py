"""Batch jobs run outside the request path (cron, a worker, or by hand).

    python jobs.py rank           # recompute host tags
    python jobs.py sync           # restore booked windows from confirmed bookings
    python jobs.py remind         # SMS guests whose stay starts within a day
    python jobs.py confirmations  # resend confirmation SMS that never went out
    python jobs.py all            # all of the above
    python jobs.py create-admin   # create an admin account
"""
import logging
from datetime import timedelta

import click
from bson import ObjectId

import notifications
from availability import sync_booked_windows
from database import get_db
from ranking import recompute_host_tags
from schemas import User as UserSchema, utcnow
from security import hash_password
from settings import LOG_LEVEL

logger = logging.getLogger(__name__)


def _stay_contact(db, booking: dict):
    guest = db["user"].find_one({"_id": ObjectId(booking["guest_id"])}, {"phone": 1})
    prop = db["property"].find_one({"_id": ObjectId(booking["property_id"])}, {"title": 1})
    if not guest or not guest.get("phone") or not prop:
        return None, None
    return guest["phone"], prop["title"]


def _send_each(db, bookings, send, flag: str, label: str) -> dict:
    sent = failed = 0
    for booking in bookings:
        phone, title = _stay_contact(db, booking)
        if phone is None:
            failed += 1
            continue
        try:
            send(phone, {
                "property_title": title,
                "check_in": booking["check_in"],
                "check_out": booking["check_out"],
                "total_amount": booking["total_amount"],
            })
        except notifications.NotificationError:
            logger.exception("%s for booking %s failed", label, booking["_id"])
            failed += 1
            continue
        db["booking"].update_one({"_id": booking["_id"]}, {"$set": {flag: True}})
        sent += 1
    logger.info("Sent %d %s messages, %d failed", sent, label, failed)
    return {"sent": sent, "failed": failed}


def send_upcoming_reminders(db, within: timedelta = timedelta(days=1)) -> dict:
    now = utcnow()
    bookings = list(db["booking"].find({
        "status": "confirmed",
        "check_in": {"$gt": now, "$lte": now + within},
        "reminder_sent": {"$ne": True},
    }))
    return _send_each(db, bookings, notifications.send_booking_reminder, "reminder_sent", "check-in reminder")


def resend_confirmations(db) -> dict:
    """Confirmation SMS for confirmed stays that have not started and were never notified."""
    bookings = list(db["booking"].find({
        "status": "confirmed",
        "check_in": {"$gt": utcnow()},
        "confirmation_sent": {"$ne": True},
    }))
    return _send_each(db, bookings, notifications.send_booking_confirmation, "confirmation_sent", "confirmation")


def create_admin(db, email: str, password: str, first_name: str, last_name: str, phone: str) -> str:
    if db["user"].find_one({"email": email}):
        raise click.ClickException(f"User {email} already exists")
    user = UserSchema(
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        role="admin",
        is_verified=True,
    )
    return str(db["user"].insert_one(user.model_dump()).inserted_id)


@click.group()
def cli():
    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@cli.command("rank")
def rank_command():
    click.echo(recompute_host_tags(get_db()))


@cli.command("sync")
def sync_command():
    click.echo(sync_booked_windows(get_db()))


@cli.command("remind")
def remind_command():
    click.echo(send_upcoming_reminders(get_db()))


@cli.command("confirmations")
def confirmations_command():
    click.echo(resend_confirmations(get_db()))


@cli.command("all")
@click.pass_context
def all_command(ctx):
    ctx.invoke(rank_command)
    ctx.invoke(sync_command)
    ctx.invoke(remind_command)
    ctx.invoke(confirmations_command)


@cli.command("create-admin")
@click.option("--email", prompt=True)
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--first-name", prompt=True)
@click.option("--last-name", prompt=True)
@click.option("--phone", prompt=True)
def create_admin_command(email, password, first_name, last_name, phone):
    user_id = create_admin(get_db(), email, password, first_name, last_name, phone)
    click.echo(f"Admin created: {user_id}")


if __name__ == "__main__":
    cli()
