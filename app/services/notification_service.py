"""Approval-request notifications: an in-app record plus an optional email."""
from __future__ import annotations

import logging
from typing import Optional

from flask import current_app
from flask_mail import Mail, Message
from sqlalchemy.exc import SQLAlchemyError

from app import db
from app.models import ApprovalNotification, Expense, User
from app.services.errors import NotFound
from app.services.repository import DEFAULT_PAGE_SIZE, ApprovalRepository, page_window, pagination

logger = logging.getLogger(__name__)


class NotificationService:
    """Tells an approver that an expense is waiting for their decision."""

    def __init__(self, mail: Optional[Mail] = None):
        self.mail = mail

    def notify(self, expense_id: int, approver_id: int) -> Optional[ApprovalNotification]:
        """Record the notification and email the approver; never raises for delivery problems."""
        notification = ApprovalNotification(
            expense_id=expense_id,
            approver_id=approver_id,
            notification_type="approval_request",
        )
        try:
            db.session.add(notification)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Failed to record approval notification for expense {expense_id}: {str(e)}")
            return None

        if current_app.config.get("APPROVAL_NOTIFY_BY_EMAIL", False):
            self._send_approval_email(expense_id, approver_id)
        return notification

    def _send_approval_email(self, expense_id: int, approver_id: int) -> bool:
        """Send the approval-request email using Flask-Mail."""
        try:
            if not self.mail:
                logger.error("Mail service not initialized")
                return False

            approver = db.session.get(User, approver_id)
            expense = db.session.get(Expense, expense_id)
            if approver is None or expense is None:
                return False

            msg = Message(
                subject=f"ExpensoX - Expense #{expense.id} awaits your approval",
                sender=current_app.config.get("MAIL_DEFAULT_SENDER"),
                recipients=[approver.email],
            )
            msg.body = self._get_text_template(approver, expense)
            self.mail.send(msg)
            logger.info(f"Approval request sent to {approver.email} for expense {expense_id}")
            return True

        except Exception as e:
            logger.error(f"Failed to send approval email for expense {expense_id}: {str(e)}")
            return False

    def _get_text_template(self, approver: User, expense: Expense) -> str:
        submitter = expense.submitter.full_name if expense.submitter else "An employee"
        amount = expense.amount_in_company_currency
        currency = expense.company.currency_code if expense.company else None
        if amount is None or currency is None:
            amount, currency = expense.amount_original, expense.currency_original

        text_template = f"""
Hi {approver.first_name},

{submitter} submitted an expense that needs your decision.

Category: {expense.category}
Amount: {amount} {currency}
Date: {expense.date_spent.isoformat() if expense.date_spent else "n/a"}

Please review it from your pending approvals.

--
ExpensoX Team
This is an automated message, please do not reply to this email.
        """
        return text_template.strip()


# Global notification service instance
notification_service = NotificationService()


def init_notification_service(mail: Mail) -> None:
    """Initialize the notification service with the Flask-Mail instance."""
    notification_service.mail = mail


def notify(expense_id: int, approver_id: int) -> Optional[ApprovalNotification]:
    """Convenience function used as the engine's default notifier."""
    return notification_service.notify(expense_id, approver_id)


def list_notifications(approver_id: int, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> dict:
    """Page through an approver's notifications, newest first."""
    page, limit, offset = page_window(page, limit)
    repo = ApprovalRepository(db.session)
    notifications = repo.list_notifications(approver_id, limit=limit, offset=offset)
    return {
        "notifications": [notification.to_dict() for notification in notifications],
        "pagination": pagination(page, limit, repo.count_notifications(approver_id)),
    }


def mark_notification_read(notification_id: int, approver_id: int) -> ApprovalNotification:
    repo = ApprovalRepository(db.session)
    notification = repo.get_notification(notification_id, approver_id)
    if notification is None:
        raise NotFound("Notification not found.")
    with repo.transaction():
        notification.is_read = True
    return notification
